from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import settings
from governor.errors import RATE_LIMIT_MARKER, BackendFailure, RateLimitedError
from ops.metrics import Timer

log = logging.getLogger("studybuddy.gemini")

_RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"


def _parse_duration(v: Any) -> Optional[float]:
    # google.protobuf.Duration in JSON form: "5s", "1.5s"
    if not isinstance(v, str) or not v.endswith("s"):
        return None
    try:
        return float(v[:-1])
    except ValueError:
        return None


def _retry_after_from_response(r: httpx.Response, body: Dict[str, Any]) -> Optional[float]:
    for detail in (body.get("error") or {}).get("details") or []:
        if isinstance(detail, dict) and detail.get("@type") == _RETRY_INFO_TYPE:
            parsed = _parse_duration(detail.get("retryDelay"))
            if parsed is not None:
                return parsed
    header = r.headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            return None
    return None


def _response_text(body: Dict[str, Any]) -> str:
    candidates = body.get("candidates") or []
    if not candidates:
        return ""
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


class GeminiClient:
    """Thin async client for the Gemini generateContent REST endpoint.

    Throttling (HTTP 429) surfaces as RateLimitedError carrying the backend's
    RetryInfo delay; everything else that is not a 2xx is a BackendFailure.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.GEMINI_API_KEY
        if not self.api_key:
            raise RuntimeError("GEMINI_API_KEY not configured")
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_API_BASE).rstrip("/")
        self.http = http or httpx.AsyncClient(timeout=timeout or settings.GEMINI_TIMEOUT_SECONDS)

    async def generate(self, prompt: str) -> str:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        t = Timer()
        try:
            r = await self.http.post(url, json=payload, headers={"x-goog-api-key": self.api_key})
        except httpx.HTTPError as e:
            log.error(
                "gemini_call_exception",
                extra={"extra": {"event": "gemini_call_exception", "error_type": type(e).__name__, "message": str(e), "latency_ms": t.ms()}},
            )
            raise BackendFailure(f"gemini transport error: {e}") from e

        try:
            body = r.json()
        except ValueError:
            body = {}

        log.info(
            "gemini_call_result",
            extra={"extra": {"event": "gemini_call_result", "model": self.model, "status_code": r.status_code, "latency_ms": t.ms()}},
        )

        if r.status_code == 429:
            retry_after = _retry_after_from_response(r, body)
            message = (body.get("error") or {}).get("message") or ""
            raise RateLimitedError(f"[{RATE_LIMIT_MARKER}] {message}".strip(), retry_after=retry_after)
        if r.status_code >= 400:
            message = (body.get("error") or {}).get("message") or (r.text or "")[:500]
            raise BackendFailure(f"gemini error {r.status_code}: {message}", status_code=r.status_code)

        return _response_text(body)

    async def aclose(self) -> None:
        await self.http.aclose()
