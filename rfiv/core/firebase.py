"""
Firebase admin initialization.

The Firestore client built here is handed to the patient store when the
app starts; nothing else holds a reference to it.
"""

import os
import firebase_admin
from firebase_admin import credentials, firestore

from rfiv.services.logger import log_info


def init_firebase(cred_path: str):
    """
    Initialize Firebase Admin SDK if not already initialized and return a
    Firestore client.

    The FIREBASE_CREDENTIALS environment variable (through Settings) points
    at the service account JSON.
    """
    # Prevent re-initialization (important for Uvicorn reload)
    if not firebase_admin._apps:
        if not os.path.exists(cred_path):
            raise RuntimeError(
                f"Firebase credentials not found at: {cred_path}\n"
                "Set FIREBASE_CREDENTIALS env var or place firebase_key.json correctly."
            )

        cred = credentials.Certificate(cred_path)
        firebase_admin.initialize_app(cred)
        log_info("Firebase Admin initialized successfully.")

    return firestore.client()
