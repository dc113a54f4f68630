from __future__ import annotations

import asyncio
import os
import platform
import time
from typing import Any, Dict

from fastapi import APIRouter, Request

from config.settings import settings

router = APIRouter()


def _firestore_probe(timeout_s: float = 0.20) -> Dict[str, Any]:
    """
    Read-only, bounded-time Firestore connectivity probe.
    - No writes
    - Uses a fixed doc path.
    """
    try:
        from storage.firestore_client import get_firestore_client

        t0 = time.time()
        get_firestore_client().collection("system").document("healthz").get(timeout=timeout_s)
        dt_ms = int((time.time() - t0) * 1000)
        return {"ok": True, "latency_ms": dt_ms}
    except Exception as e:
        return {"ok": False, "error_type": type(e).__name__, "message": str(e)}


def _quota_store_info(request: Request) -> Dict[str, Any]:
    tracker = getattr(request.app.state, "quota_tracker", None)
    if tracker is None:
        return {"ready": False}
    store = tracker.store
    info: Dict[str, Any] = {"ready": True, "kind": store.kind}
    path = getattr(store, "path", None)
    if path is not None:
        info["path"] = str(path)
        info["writable"] = store.is_writable()
    return info


@router.get("/health")
async def health(request: Request):
    governor = getattr(request.app.state, "request_governor", None)
    fs = await asyncio.to_thread(_firestore_probe)

    payload: Dict[str, Any] = {
        "ok": True,
        "service": "studybuddy-api",
        "revision": os.getenv("K_REVISION") or "",
        "environment": settings.ENVIRONMENT,
        "python": platform.python_version(),
        "gemini_configured": bool(getattr(request.app.state, "gemini", None)),
        "gemini_model": settings.GEMINI_MODEL,
        "firestore_ok": bool(fs.get("ok", False)),
        "firestore": fs,
        "quota_store": _quota_store_info(request),
        "governor": governor.stats() if governor is not None else None,
        "time_unix": time.time(),
    }

    # Sessions live in Firestore; without it the quiz endpoints cannot persist anything.
    if not payload["firestore_ok"] or not payload["gemini_configured"]:
        payload["ok"] = False

    return payload
