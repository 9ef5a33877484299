# rfiv/core/config.py
from __future__ import annotations

from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Patient routes are mounted under this version prefix
    API_PREFIX: str = "/v1"

    # "firestore" for deployments, "memory" for local runs without Firebase
    STORE_BACKEND: Literal["firestore", "memory"] = "firestore"

    # Service account JSON for Firebase Admin
    FIREBASE_CREDENTIALS: str = "rfiv/core/firebase_key.json"
    PATIENTS_COLLECTION: str = "patients"
    TAGS_COLLECTION: str = "patient_tags"
    STORE_TIMEOUT_SECONDS: float = 10.0

    # Some deployments register patients before a tag is handed out
    TAG_ID_REQUIRED: bool = True

    # Same-location pings inside this window (ms) are dropped
    LOCATION_WINDOW_MS: int = 120000

    CORS_ORIGINS: List[str] = ["*"]

    DEBUG_MODE: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    return Settings()
