from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from governor.errors import QuotaPersistenceError
from governor.quota_state import QuotaState
from models.schema import COL_SYSTEM, DOC_QUOTA_STATE

log = logging.getLogger("studybuddy.quota.store")


class QuotaStateStore(Protocol):
    kind: str

    def load(self) -> Optional[QuotaState]:
        """Return the persisted state, None when nothing was saved yet.

        Raises QuotaPersistenceError when the state exists but cannot be read.
        """

    def save(self, state: QuotaState) -> None:
        """Raises QuotaPersistenceError when the state cannot be written."""


class InMemoryQuotaStore:
    kind = "memory"

    def __init__(self, state: Optional[QuotaState] = None):
        self._state = state.model_copy(deep=True) if state else None
        self.saves = 0

    def load(self) -> Optional[QuotaState]:
        return self._state.model_copy(deep=True) if self._state else None

    def save(self, state: QuotaState) -> None:
        self._state = state.model_copy(deep=True)
        self.saves += 1


def _is_serverless() -> bool:
    # Read-only bundles: only the temp dir is writable.
    return os.getenv("VERCEL") == "1" or os.getcwd().startswith("/var/task")


def default_quota_path() -> Path:
    if _is_serverless():
        return Path(tempfile.gettempdir()) / "quota.json"
    return Path("logs") / "quota.json"


class JsonFileQuotaStore:
    kind = "file"

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else default_quota_path()

    def load(self) -> Optional[QuotaState]:
        if not self.path.exists():
            return None
        try:
            return QuotaState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            raise QuotaPersistenceError(f"cannot read {self.path}: {e}") from e

    def save(self, state: QuotaState) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise QuotaPersistenceError(f"cannot write {self.path}: {e}") from e

    def is_writable(self) -> bool:
        target = self.path.parent if self.path.parent.exists() else Path(".")
        return os.access(target, os.W_OK)


class FirestoreQuotaStore:
    kind = "firestore"

    def __init__(self, db=None):
        if db is None:
            from storage.firestore_client import get_firestore_client

            db = get_firestore_client()
        self.db = db

    def _doc_ref(self):
        return self.db.collection(COL_SYSTEM).document(DOC_QUOTA_STATE)

    def load(self) -> Optional[QuotaState]:
        try:
            snap = self._doc_ref().get()
            if not snap.exists:
                return None
            return QuotaState.model_validate(snap.to_dict() or {})
        except Exception as e:
            raise QuotaPersistenceError(f"cannot read {COL_SYSTEM}/{DOC_QUOTA_STATE}: {e}") from e

    def save(self, state: QuotaState) -> None:
        try:
            self._doc_ref().set(state.model_dump(mode="json"), merge=False)
        except Exception as e:
            raise QuotaPersistenceError(f"cannot write {COL_SYSTEM}/{DOC_QUOTA_STATE}: {e}") from e


def build_quota_store(kind: str, path: str = "") -> QuotaStateStore:
    kind = (kind or "file").strip().lower()
    if kind == "memory":
        return InMemoryQuotaStore()
    if kind == "firestore":
        return FirestoreQuotaStore()
    if kind == "file":
        store = JsonFileQuotaStore(Path(path) if path else None)
        log.info("quota_store_file", extra={"extra": {"event": "quota_store_file", "path": str(store.path)}})
        return store
    raise ValueError(f"unknown QUOTA_STORE: {kind!r}")
