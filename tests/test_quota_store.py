import pytest

from governor.errors import QuotaPersistenceError
from governor.quota_state import QuotaHistoryEntry, QuotaState
from governor.quota_store import FirestoreQuotaStore, JsonFileQuotaStore, build_quota_store


class FakeSnap:
    def __init__(self, data):
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDoc:
    def __init__(self, db, path):
        self.db = db
        self.path = path

    def get(self):
        return FakeSnap(self.db.docs.get(self.path))

    def set(self, data, merge=False):
        self.db.docs[self.path] = data


class FakeCollection:
    def __init__(self, db, name):
        self.db = db
        self.name = name

    def document(self, doc_id):
        return FakeDoc(self.db, f"{self.name}/{doc_id}")


class FakeDb:
    def __init__(self):
        self.docs = {}

    def collection(self, name):
        return FakeCollection(self, name)


def _state():
    return QuotaState(
        requests_today=4,
        requests_this_minute=2,
        minute_window_start=1_700_000_000_000,
        day_key="2024-03-10",
        history=[QuotaHistoryEntry(date="2024-03-09", requests=11, quota_exceeds=1)],
    )


def test_file_store_missing_file_is_not_an_error(tmp_path):
    assert JsonFileQuotaStore(tmp_path / "quota.json").load() is None


def test_file_store_creates_directory_and_reloads(tmp_path):
    store = JsonFileQuotaStore(tmp_path / "logs" / "quota.json")
    store.save(_state())
    loaded = store.load()
    assert loaded == _state()
    assert not (tmp_path / "logs" / "quota.json.tmp").exists()


def test_file_store_corrupt_file_raises_persistence_error(tmp_path):
    path = tmp_path / "quota.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(QuotaPersistenceError):
        JsonFileQuotaStore(path).load()


def test_file_store_unwritable_location_raises_persistence_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    with pytest.raises(QuotaPersistenceError):
        JsonFileQuotaStore(blocker / "quota.json").save(_state())


def test_firestore_store_uses_system_document():
    db = FakeDb()
    store = FirestoreQuotaStore(db=db)
    assert store.load() is None
    store.save(_state())
    assert db.docs["system/gemini_quota_state"]["requests_today"] == 4
    assert store.load() == _state()


def test_build_quota_store_rejects_unknown_kind():
    with pytest.raises(ValueError):
        build_quota_store("redis")
    assert build_quota_store("memory").kind == "memory"
