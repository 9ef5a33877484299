"""
Patient storage backends.

Records are plain dicts shaped like the API representation:
    {"name": ..., "id": ..., "tagId": ..., "locations": [[timestamp, location], ...]}

Two backends implement the same interface:
  - FirestorePatientStore: patients/{id} documents plus a patient_tags/{tagId}
    reservation document per tag. Anything touching uniqueness or the
    location list runs in a Firestore transaction.
  - MemoryPatientStore: process-local dicts for local runs and tests.
"""
from __future__ import annotations

import copy
import functools
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore import FieldFilter

from rfiv.core.exceptions import StoreUnavailable, UniquenessConflict
from rfiv.services.logger import log_debug

Record = Dict[str, Any]
Entry = Tuple[Any, str]
AdmitFn = Callable[[Entry, Entry], bool]

EMPTY_LOCATION: Entry = (0, "")


def matches_exact(record: Record, filters: Dict[str, str]) -> bool:
    return all(record.get(field) == value for field, value in filters.items())


def matches_partial(record: Record, filters: Dict[str, str]) -> bool:
    """Case-insensitive substring match on every filter field."""
    for field, needle in filters.items():
        value = record.get(field)
        if value is None or needle.lower() not in str(value).lower():
            return False
    return True


class PatientStore:
    """Interface shared by the storage backends."""

    def insert(self, record: Record) -> str:
        raise NotImplementedError

    def find_one(self, filters: Dict[str, str]) -> Optional[Record]:
        raise NotImplementedError

    def find_many(self, filters: Dict[str, str]) -> List[Record]:
        raise NotImplementedError

    def update_one(self, patient_id: str, patch: Dict[str, str]) -> Optional[Record]:
        raise NotImplementedError

    def append_location(
        self, tag_id: str, entry: Entry, admit: AdmitFn
    ) -> Optional[Tuple[Record, bool]]:
        raise NotImplementedError

    def ping(self):
        """Check the backend is reachable."""


# -------------------------
# In-memory backend
# -------------------------
class MemoryPatientStore(PatientStore):
    def __init__(self):
        self._patients: Dict[str, Record] = {}
        self._tags: Dict[str, str] = {}
        self._lock = threading.Lock()

    def insert(self, record: Record) -> str:
        with self._lock:
            if record["id"] in self._patients:
                raise UniquenessConflict("id", record["id"])
            tag_id = record.get("tagId")
            if tag_id is not None and tag_id in self._tags:
                raise UniquenessConflict("tagId", tag_id)

            stored = copy.deepcopy(record)
            stored.setdefault("locations", [])
            self._patients[record["id"]] = stored
            if tag_id is not None:
                self._tags[tag_id] = record["id"]
        return record["id"]

    def find_one(self, filters: Dict[str, str]) -> Optional[Record]:
        with self._lock:
            for record in self._patients.values():
                if matches_exact(record, filters):
                    return copy.deepcopy(record)
        return None

    def find_many(self, filters: Dict[str, str]) -> List[Record]:
        with self._lock:
            return [
                copy.deepcopy(r) for r in self._patients.values() if matches_partial(r, filters)
            ]

    def update_one(self, patient_id: str, patch: Dict[str, str]) -> Optional[Record]:
        with self._lock:
            record = self._patients.get(patient_id)
            if record is None:
                return None

            new_tag = patch.get("tagId")
            old_tag = record.get("tagId")
            if new_tag is not None and new_tag != old_tag:
                if new_tag in self._tags:
                    raise UniquenessConflict("tagId", new_tag)
                if old_tag is not None:
                    self._tags.pop(old_tag, None)
                self._tags[new_tag] = patient_id

            record.update(patch)
            return copy.deepcopy(record)

    def append_location(
        self, tag_id: str, entry: Entry, admit: AdmitFn
    ) -> Optional[Tuple[Record, bool]]:
        # Check and append happen under one lock, so two pings for the
        # same tag cannot both see the same last entry
        with self._lock:
            patient_id = self._tags.get(tag_id)
            record = self._patients.get(patient_id) if patient_id else None
            if record is None:
                return None

            locations = record["locations"]
            last = tuple(locations[-1]) if locations else EMPTY_LOCATION
            admitted = admit(last, entry)
            if admitted:
                locations.append([entry[0], entry[1]])
            return copy.deepcopy(record), admitted


# -------------------------
# Firestore backend
# -------------------------
def doc_id_for(value: str) -> str:
    """Firestore document ids cannot contain '/' or be '.' / '..'."""
    doc_id = quote(value, safe="")
    if doc_id in (".", ".."):
        doc_id = doc_id.replace(".", "%2E")
    return doc_id


def patient_to_document(record: Record) -> Dict[str, Any]:
    # Firestore has no nested arrays, so entries are stored as maps
    return {
        "name": record["name"],
        "id": record["id"],
        "tagId": record.get("tagId"),
        "locations": [
            {"timestamp": t, "location": loc} for t, loc in record.get("locations") or []
        ],
    }


def patient_from_document(data: Dict[str, Any]) -> Record:
    return {
        "name": data.get("name"),
        "id": data.get("id"),
        "tagId": data.get("tagId"),
        "locations": [
            [item.get("timestamp", 0), item.get("location", "")]
            for item in data.get("locations") or []
        ],
    }


def _store_errors(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (google_exceptions.GoogleAPICallError, google_exceptions.RetryError) as exc:
            raise StoreUnavailable(f"Patient store unavailable: {exc}") from exc

    return wrapper


class FirestorePatientStore(PatientStore):
    def __init__(self, db, patients_collection: str = "patients",
                 tags_collection: str = "patient_tags", timeout: float = 10.0):
        self._db = db
        self._patients = db.collection(patients_collection)
        self._tags = db.collection(tags_collection)
        self._timeout = timeout

    def _patient_ref(self, patient_id: str):
        return self._patients.document(doc_id_for(patient_id))

    def _tag_ref(self, tag_id: str):
        return self._tags.document(doc_id_for(tag_id))

    def _run_transaction(self, fn):
        try:
            return fn(self._db.transaction())
        except ValueError as exc:
            # firestore.transactional gives up with ValueError once its
            # commit attempts are exhausted
            raise StoreUnavailable(f"Patient store busy: {exc}") from exc

    @_store_errors
    def ping(self):
        """Cheap timed read; raises StoreUnavailable when Firestore is unreachable."""
        list(self._patients.limit(1).stream(timeout=self._timeout))

    @_store_errors
    def insert(self, record: Record) -> str:
        timeout = self._timeout
        patient_ref = self._patient_ref(record["id"])
        tag_id = record.get("tagId")
        tag_ref = self._tag_ref(tag_id) if tag_id is not None else None

        @firestore.transactional
        def _insert(transaction):
            if patient_ref.get(transaction=transaction, timeout=timeout).exists:
                raise UniquenessConflict("id", record["id"])
            if tag_ref is not None and tag_ref.get(transaction=transaction, timeout=timeout).exists:
                raise UniquenessConflict("tagId", tag_id)

            transaction.create(patient_ref, patient_to_document(record))
            if tag_ref is not None:
                transaction.create(tag_ref, {"tagId": tag_id, "patientId": record["id"]})

        self._run_transaction(_insert)
        log_debug("patient_inserted", {"id": record["id"], "tagId": tag_id})
        return record["id"]

    @_store_errors
    def find_one(self, filters: Dict[str, str]) -> Optional[Record]:
        if "id" in filters:
            snap = self._patient_ref(filters["id"]).get(timeout=self._timeout)
            candidates = [snap] if snap.exists else []
        elif "tagId" in filters:
            tag_snap = self._tag_ref(filters["tagId"]).get(timeout=self._timeout)
            if not tag_snap.exists:
                return None
            snap = self._patient_ref(tag_snap.get("patientId")).get(timeout=self._timeout)
            candidates = [snap] if snap.exists else []
        else:
            q = self._patients
            for field, value in filters.items():
                q = q.where(filter=FieldFilter(field, "==", value))
            candidates = q.limit(1).stream(timeout=self._timeout)

        for snap in candidates:
            record = patient_from_document(snap.to_dict() or {})
            if matches_exact(record, filters):
                return record
        return None

    @_store_errors
    def find_many(self, filters: Dict[str, str]) -> List[Record]:
        # Firestore has no substring queries; filter in Python
        out = []
        for snap in self._patients.stream(timeout=self._timeout):
            record = patient_from_document(snap.to_dict() or {})
            if matches_partial(record, filters):
                out.append(record)
        return out

    @_store_errors
    def update_one(self, patient_id: str, patch: Dict[str, str]) -> Optional[Record]:
        timeout = self._timeout
        patient_ref = self._patient_ref(patient_id)

        @firestore.transactional
        def _update(transaction):
            snap = patient_ref.get(transaction=transaction, timeout=timeout)
            if not snap.exists:
                return None
            current = patient_from_document(snap.to_dict() or {})

            new_tag = patch.get("tagId")
            old_tag = current.get("tagId")
            if new_tag is not None and new_tag != old_tag:
                new_tag_ref = self._tag_ref(new_tag)
                if new_tag_ref.get(transaction=transaction, timeout=timeout).exists:
                    raise UniquenessConflict("tagId", new_tag)
                if old_tag is not None:
                    transaction.delete(self._tag_ref(old_tag))
                transaction.create(new_tag_ref, {"tagId": new_tag, "patientId": patient_id})

            transaction.update(patient_ref, dict(patch))
            current.update(patch)
            return current

        updated = self._run_transaction(_update)
        if updated is not None:
            log_debug("patient_updated", {"id": patient_id, "patch": patch})
        return updated

    @_store_errors
    def append_location(
        self, tag_id: str, entry: Entry, admit: AdmitFn
    ) -> Optional[Tuple[Record, bool]]:
        timeout = self._timeout
        tag_ref = self._tag_ref(tag_id)

        @firestore.transactional
        def _append(transaction):
            tag_snap = tag_ref.get(transaction=transaction, timeout=timeout)
            if not tag_snap.exists:
                return None
            patient_ref = self._patient_ref(tag_snap.get("patientId"))
            snap = patient_ref.get(transaction=transaction, timeout=timeout)
            if not snap.exists:
                return None

            data = snap.to_dict() or {}
            record = patient_from_document(data)
            locations = record["locations"]
            last = tuple(locations[-1]) if locations else EMPTY_LOCATION

            admitted = admit(last, entry)
            if admitted:
                stored = list(data.get("locations") or [])
                stored.append({"timestamp": entry[0], "location": entry[1]})
                transaction.update(patient_ref, {"locations": stored})
                locations.append([entry[0], entry[1]])
            return record, admitted

        return self._run_transaction(_append)


def create_store(settings, db=None) -> PatientStore:
    if settings.STORE_BACKEND == "memory":
        return MemoryPatientStore()
    return FirestorePatientStore(
        db,
        patients_collection=settings.PATIENTS_COLLECTION,
        tags_collection=settings.TAGS_COLLECTION,
        timeout=settings.STORE_TIMEOUT_SECONDS,
    )
