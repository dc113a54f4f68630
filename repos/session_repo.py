from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.cloud import firestore
from google.cloud.firestore import Client

from models.schema import COL_SESSIONS
from storage.firestore_client import get_firestore_client


class SessionRepository:
    def __init__(self, db: Optional[Client] = None):
        self.db = db or get_firestore_client()

    def create(self, title: str, question_type: str, topic: str, session_type: str = "quiz") -> str:
        ref = self.db.collection(COL_SESSIONS).document()
        ref.set({
            "title": title,
            "type": session_type,
            "question_type": question_type,
            "topic": topic or "",
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        return ref.id

    def list_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        docs = (
            self.db.collection(COL_SESSIONS)
            .order_by("created_at", direction=firestore.Query.DESCENDING)
            .limit(limit)
            .stream()
        )
        out = []
        for d in docs:
            item = d.to_dict() or {}
            item["session_id"] = d.id
            out.append(item)
        return out

    def delete(self, session_id: str) -> None:
        self.db.collection(COL_SESSIONS).document(session_id).delete()
