from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore import Client
from google.cloud.firestore_v1.base_query import FieldFilter

from models.schema import COL_CONVERSATIONS
from storage.firestore_client import get_firestore_client


class ConversationRepository:
    def __init__(self, db: Optional[Client] = None):
        self.db = db or get_firestore_client()

    def _for_session(self, session_id: str):
        return self.db.collection(COL_CONVERSATIONS).where(filter=FieldFilter("session_id", "==", session_id))

    def add(self, session_id: str, prompt: Dict[str, Any], response: Dict[str, Any]) -> str:
        ref = self.db.collection(COL_CONVERSATIONS).document()
        ref.set({
            "session_id": session_id,
            "prompt": prompt,
            "response": response,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_answers": [],
        })
        return ref.id

    def list_for_session(self, session_id: str) -> List[Dict[str, Any]]:
        # Sorted here rather than with order_by to avoid a composite index.
        out = []
        for d in self._for_session(session_id).stream():
            item = d.to_dict() or {}
            item["conversation_id"] = d.id
            out.append(item)
        out.sort(key=lambda c: c.get("timestamp") or "")
        return out

    def append_user_answer(self, session_id: str, answer: Dict[str, Any]) -> bool:
        convs = self.list_for_session(session_id)
        if not convs:
            return False
        latest = convs[-1]["conversation_id"]
        self.db.collection(COL_CONVERSATIONS).document(latest).update(
            {"user_answers": firestore.ArrayUnion([answer])}
        )
        return True

    def delete_for_session(self, session_id: str) -> int:
        n = 0
        for d in self._for_session(session_id).stream():
            d.reference.delete()
            n += 1
        return n
