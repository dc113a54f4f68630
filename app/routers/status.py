from __future__ import annotations

import math

from fastapi import APIRouter, Depends

from app.dependencies import get_quota_tracker, get_request_governor
from governor.quota_tracker import QuotaTracker
from governor.request_governor import RequestGovernor

router = APIRouter()


@router.get("/api-status")
async def api_status(
    tracker: QuotaTracker = Depends(get_quota_tracker),
    governor: RequestGovernor = Depends(get_request_governor),
):
    status = tracker.check()
    payload = status.to_public()
    if status.is_quota_exceeded:
        seconds = math.ceil(status.time_to_reset_ms / 1000)
        payload["message"] = f"The API is under heavy demand. Please try again in {seconds} seconds."
    else:
        payload["message"] = "API available"
    payload["governor"] = governor.stats()
    return payload
