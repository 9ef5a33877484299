import copy
import unittest
from unittest import mock

from fastapi.testclient import TestClient
from google.api_core import exceptions as google_exceptions

from rfiv.core.config import Settings
from rfiv.core.exceptions import StoreUnavailable, UniquenessConflict
from rfiv.main import create_app
from rfiv.services import patient_store
from rfiv.services.patient_store import (
    FirestorePatientStore,
    MemoryPatientStore,
    doc_id_for,
    matches_partial,
    patient_from_document,
    patient_to_document,
)


class TestFirestoreDocuments(unittest.TestCase):
    def test_locations_stored_as_maps(self):
        record = {"name": "Ann", "id": "p1", "tagId": "t1", "locations": [[1000, "roomA"]]}
        doc = patient_to_document(record)
        self.assertEqual(doc["locations"], [{"timestamp": 1000, "location": "roomA"}])
        self.assertEqual(patient_from_document(doc), record)

    def test_missing_locations(self):
        record = patient_from_document({"name": "Ann", "id": "p1"})
        self.assertEqual(record["locations"], [])
        self.assertIsNone(record["tagId"])

    def test_doc_ids_are_path_safe(self):
        self.assertEqual(doc_id_for("ward/7"), "ward%2F7")
        self.assertEqual(doc_id_for(".."), "%2E%2E")
        self.assertEqual(doc_id_for("p1"), "p1")


class TestMemoryStore(unittest.TestCase):
    def setUp(self):
        self.store = MemoryPatientStore()
        self.store.insert({"name": "Ann Lee", "id": "p1", "tagId": "t1", "locations": []})

    def test_partial_match_requires_every_field(self):
        record = self.store.find_one({"id": "p1"})
        self.assertTrue(matches_partial(record, {"name": "LEE", "tagId": "t"}))
        self.assertFalse(matches_partial(record, {"name": "lee", "tagId": "x"}))

    def test_find_one_is_exact(self):
        self.assertIsNone(self.store.find_one({"id": "p"}))
        self.assertEqual(self.store.find_one({"tagId": "t1"})["id"], "p1")

    def test_returned_records_are_copies(self):
        record = self.store.find_one({"id": "p1"})
        record["locations"].append([1, "x"])
        self.assertEqual(self.store.find_one({"id": "p1"})["locations"], [])

    def test_append_unknown_tag(self):
        self.assertIsNone(self.store.append_location("nope", (1, "x"), lambda last, new: True))

    def test_append_passes_last_entry(self):
        seen = []

        def admit(last, new):
            seen.append(last)
            return True

        self.store.append_location("t1", (1000, "roomA"), admit)
        self.store.append_location("t1", (2000, "roomB"), admit)
        self.assertEqual(seen, [(0, ""), (1000, "roomA")])



# -------------------------
# Firestore backend against an in-process fake client
# -------------------------
class FakeSnapshot:
    def __init__(self, data):
        self._data = copy.deepcopy(data)

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)

    def get(self, field):
        return self._data[field]


class FakeDocument:
    def __init__(self, collection, doc_id):
        self.collection = collection
        self.id = doc_id

    def get(self, transaction=None, timeout=None):
        return FakeSnapshot(self.collection.docs.get(self.id))


class FakeCollection:
    def __init__(self):
        self.docs = {}

    def document(self, doc_id):
        return FakeDocument(self, doc_id)

    def limit(self, count):
        return self

    def stream(self, timeout=None):
        return [FakeSnapshot(data) for data in self.docs.values()]


class FakeTransaction:
    def create(self, ref, data):
        if ref.id in ref.collection.docs:
            raise google_exceptions.AlreadyExists(ref.id)
        ref.collection.docs[ref.id] = copy.deepcopy(data)

    def update(self, ref, data):
        ref.collection.docs[ref.id].update(copy.deepcopy(data))

    def delete(self, ref):
        ref.collection.docs.pop(ref.id, None)


class FakeFirestore:
    def __init__(self):
        self.collections = {}

    def collection(self, name):
        return self.collections.setdefault(name, FakeCollection())

    def transaction(self):
        return FakeTransaction()


def _run_once(fn):
    return fn


def _gives_up(fn):
    def run(transaction):
        raise ValueError("Failed to commit transaction in 5 attempts.")
    return run


class TestFirestoreStore(unittest.TestCase):
    def setUp(self):
        patcher = mock.patch.object(patient_store.firestore, "transactional", new=_run_once)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.db = FakeFirestore()
        self.store = FirestorePatientStore(self.db)
        self.store.insert({"name": "Ann", "id": "p1", "tagId": "t1", "locations": []})
        self.store.insert({"name": "Bob", "id": "p2", "tagId": "t2", "locations": []})

    def tags(self):
        return self.db.collection("patient_tags").docs

    def test_insert_writes_patient_and_tag(self):
        self.assertEqual(self.store.find_one({"id": "p1"})["tagId"], "t1")
        self.assertEqual(self.tags()["t1"], {"tagId": "t1", "patientId": "p1"})
        self.assertEqual(self.store.find_one({"tagId": "t2"})["id"], "p2")

    def test_duplicate_id(self):
        with self.assertRaises(UniquenessConflict) as ctx:
            self.store.insert({"name": "X", "id": "p1", "tagId": "t9", "locations": []})
        self.assertEqual(ctx.exception.field, "id")
        self.assertNotIn("t9", self.tags())

    def test_duplicate_tag(self):
        with self.assertRaises(UniquenessConflict) as ctx:
            self.store.insert({"name": "X", "id": "p3", "tagId": "t1", "locations": []})
        self.assertEqual(ctx.exception.field, "tagId")
        self.assertIsNone(self.store.find_one({"id": "p3"}))

    def test_update_conflict_changes_nothing(self):
        with self.assertRaises(UniquenessConflict):
            self.store.update_one("p1", {"name": "Changed", "tagId": "t2"})
        self.assertEqual(self.store.find_one({"id": "p1"})["name"], "Ann")
        self.assertEqual(self.tags()["t2"]["patientId"], "p2")

    def test_tag_change_releases_old_tag(self):
        updated = self.store.update_one("p1", {"tagId": "t9"})
        self.assertEqual(updated["tagId"], "t9")
        self.assertNotIn("t1", self.tags())
        self.assertIsNotNone(self.store.update_one("p2", {"tagId": "t1"}))

    def test_update_unknown_patient(self):
        self.assertIsNone(self.store.update_one("nobody", {"name": "X"}))

    def test_append_location(self):
        def admit(last, new):
            return new[1] != last[1]

        record, admitted = self.store.append_location("t1", (1000, "roomA"), admit)
        self.assertTrue(admitted)
        record, admitted = self.store.append_location("t1", (1050, "roomA"), admit)
        self.assertFalse(admitted)
        self.assertEqual(record["locations"], [[1000, "roomA"]])
        stored = self.db.collection("patients").docs["p1"]["locations"]
        self.assertEqual(stored, [{"timestamp": 1000, "location": "roomA"}])
        self.assertIsNone(self.store.append_location("nope", (1, "x"), admit))

    def test_search_filters_in_python(self):
        self.assertEqual([r["id"] for r in self.store.find_many({"name": "an"})], ["p1"])

    def test_transaction_contention_is_unavailable(self):
        with mock.patch.object(patient_store.firestore, "transactional", new=_gives_up):
            with self.assertRaises(StoreUnavailable):
                self.store.insert({"name": "X", "id": "p3", "tagId": "t3", "locations": []})


class TestFirestoreUnavailable(unittest.TestCase):
    def setUp(self):
        self.db = mock.MagicMock()
        collection = self.db.collection.return_value
        collection.document.return_value.get.side_effect = (
            google_exceptions.ServiceUnavailable("backend down")
        )
        collection.limit.return_value.stream.side_effect = (
            google_exceptions.DeadlineExceeded("timed out")
        )

    def test_request_gets_503(self):
        settings = Settings(STORE_BACKEND="firestore")
        client = TestClient(create_app(settings=settings, store=FirestorePatientStore(self.db)))
        resp = client.get("/v1/patient/p1")
        self.assertEqual(resp.status_code, 503)
        self.assertTrue(resp.json()["error"].startswith("Patient store unavailable"))

    def test_ping_raises(self):
        with self.assertRaises(StoreUnavailable):
            FirestorePatientStore(self.db).ping()

    def test_startup_aborts_when_unreachable(self):
        settings = Settings(STORE_BACKEND="firestore")
        with mock.patch("rfiv.main.init_firebase", return_value=self.db):
            app = create_app(settings=settings)
            with self.assertRaises(StoreUnavailable):
                with TestClient(app):
                    pass


if __name__ == '__main__':
    unittest.main()
