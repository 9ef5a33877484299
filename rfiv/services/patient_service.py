"""Business logic / service layer for patient operations.

Routes call into PatientService; it sanitizes input, builds store filters
and applies the location admission policy. It never touches HTTP.
"""
import re
from typing import Dict, List, Optional

from rfiv.core.exceptions import (
    LocationTooSoon,
    PatientNotFound,
    PatientValidationError,
)
from rfiv.services.logger import log_debug
from rfiv.services.patient_store import Entry, PatientStore, Record

TAG_PATTERN = re.compile(r"<[\s\S]*?>")

DEFAULT_LOCATION_WINDOW_MS = 120000


def sanitize(value: Optional[str]) -> Optional[str]:
    """Strip every HTML-like <...> tag."""
    if value is None:
        return None
    return TAG_PATTERN.sub("", value)


def _sanitize_required(field: str, value: Optional[str]) -> str:
    cleaned = sanitize(value)
    if not cleaned:
        raise PatientValidationError(f"{field}: must not be empty")
    return cleaned


def should_admit(last: Entry, entry: Entry, window_ms: int = DEFAULT_LOCATION_WINDOW_MS) -> bool:
    """Keep a ping if the tag moved or the heartbeat window has passed."""
    last_timestamp, last_location = last
    timestamp, location = entry
    return location != last_location or (timestamp - last_timestamp) > window_ms


class PatientService:
    def __init__(self, store: PatientStore, tag_id_required: bool = True,
                 location_window_ms: int = DEFAULT_LOCATION_WINDOW_MS):
        self.store = store
        self.tag_id_required = tag_id_required
        self.location_window_ms = location_window_ms

    def create_patient(self, name: str, patient_id: str, tag_id: Optional[str]) -> str:
        if tag_id is None and self.tag_id_required:
            raise PatientValidationError("tagId: is required")

        record = {
            "name": _sanitize_required("name", name),
            "id": _sanitize_required("id", patient_id),
            "tagId": _sanitize_required("tagId", tag_id) if tag_id is not None else None,
            "locations": [],
        }
        self.store.insert(record)
        log_debug("patient_created", {"id": record["id"], "tagId": record["tagId"]})
        return record["id"]

    def search_patients(self, query: Dict[str, str]) -> List[Record]:
        if not query:
            raise PatientValidationError("Search requires at least one of: name, id, tagId")
        patients = self.store.find_many(query)
        if not patients:
            raise PatientNotFound("No patients match the query", query=query)
        return patients

    def get_patient(self, patient_id: str) -> Record:
        patient = self.store.find_one({"id": patient_id})
        if patient is None:
            raise PatientNotFound(f"Unknown patient: {patient_id}")
        return patient

    def update_patient(self, patient_id: str, name: Optional[str] = None,
                       tag_id: Optional[str] = None) -> Record:
        patch = {}
        if name is not None:
            patch["name"] = _sanitize_required("name", name)
        if tag_id is not None:
            patch["tagId"] = _sanitize_required("tagId", tag_id)
        if not patch:
            raise PatientValidationError("Update requires at least one of: name, tagId")

        updated = self.store.update_one(patient_id, patch)
        if updated is None:
            raise PatientNotFound(f"Unknown patient: {patient_id}")
        return updated

    def add_location(self, tag_id: str, timestamp, location: str) -> Record:
        entry = (timestamp, _sanitize_required("location", location))

        def admit(last: Entry, new: Entry) -> bool:
            return should_admit(last, new, self.location_window_ms)

        result = self.store.append_location(tag_id, entry, admit)
        if result is None:
            raise PatientNotFound(f"Unknown tag: {tag_id}")

        patient, admitted = result
        log_debug("location_ping", {"tagId": tag_id, "entry": entry, "admitted": admitted})
        if not admitted:
            raise LocationTooSoon()
        return patient
