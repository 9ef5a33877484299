import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from rfiv import __version__
from rfiv.api.routes import patients
from rfiv.core.config import Settings, get_settings
from rfiv.core.exceptions import register_exception_handlers
from rfiv.core.firebase import init_firebase
from rfiv.services.logger import log_info, log_request, set_debug
from rfiv.services.patient_service import PatientService
from rfiv.services.patient_store import PatientStore, create_store


def _connect_store(settings: Settings) -> PatientStore:
    if settings.STORE_BACKEND == "memory":
        log_info("Using in-memory patient store")
        return create_store(settings)

    # Missing credentials or an unreachable project raise here and abort startup
    db = init_firebase(settings.FIREBASE_CREDENTIALS)
    store = create_store(settings, db)
    store.ping()
    log_info(f"Firestore connected: collection '{settings.PATIENTS_COLLECTION}'")
    return store


def _build_service(settings: Settings, store: PatientStore) -> PatientService:
    return PatientService(
        store,
        tag_id_required=settings.TAG_ID_REQUIRED,
        location_window_ms=settings.LOCATION_WINDOW_MS,
    )


def create_app(settings: Optional[Settings] = None, store: Optional[PatientStore] = None) -> FastAPI:
    """Build the API. Pass ``store`` to skip connecting at startup."""
    settings = settings or get_settings()
    set_debug(settings.DEBUG_MODE)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.patient_service is None:
            app.state.patient_service = _build_service(settings, _connect_store(settings))
        log_info(f"RFIV API ready under {settings.API_PREFIX}")
        yield

    app = FastAPI(title="RFIV Patient API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.patient_service = _build_service(settings, store) if store is not None else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS, allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        log_request(request.method, request.url.path, response.status_code,
                    (time.perf_counter() - started) * 1000)
        return response

    register_exception_handlers(app)

    @app.get("/")
    async def root():
        return {"message": "Welcome to the RFIV API page."}

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    app.include_router(patients.router, prefix=settings.API_PREFIX)
    return app


app = create_app()
