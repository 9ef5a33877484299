"""
Patient API errors.

Every error carries the HTTP status it is reported with; the handlers
registered by ``register_exception_handlers`` render them as
``{"error": <message>}``.
"""
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rfiv.services.logger import log_info


class PatientAPIError(Exception):
    status_code = 400

    def __init__(self, message: str, query: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.query = query

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.query is not None:
            body["query"] = self.query
        return body


class PatientValidationError(PatientAPIError):
    """Malformed or missing input."""
    status_code = 400


class UniquenessConflict(PatientAPIError):
    """Raised when ``id`` or ``tagId`` already belongs to a patient."""
    status_code = 400

    MESSAGES = {
        "id": "Patient id already exists: {value}",
        "tagId": "Tag id already assigned: {value}",
    }

    def __init__(self, field: str, value: str):
        super().__init__(self.MESSAGES[field].format(value=value))
        self.field = field
        self.value = value


class PatientNotFound(PatientAPIError):
    status_code = 404


class LocationTooSoon(PatientAPIError):
    """The ping repeats the last location inside the heartbeat window."""
    status_code = 405

    def __init__(self):
        super().__init__("Location update too soon")


class StoreUnavailable(PatientAPIError):
    status_code = 503

    def __init__(self, message: str = "Patient store unavailable"):
        super().__init__(message)


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    # loc looks like ("body", "name") or ("query", "id")
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc)
    message = first.get("msg", "invalid value")
    return f"{field}: {message}" if field else message


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(PatientAPIError)
    async def _patient_api_error(request: Request, exc: PatientAPIError):
        if isinstance(exc, StoreUnavailable):
            log_info(f"{request.method} {request.url.path} store failure: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError):
        message = _first_validation_message(exc)
        log_info(f"{request.method} {request.url.path} validation failure: {message}")
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        log_info(f"{request.method} {request.url.path} unhandled error: {exc!r}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
