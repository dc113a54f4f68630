import asyncio
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from app.api_service import app
from app.dependencies import get_quiz_service, get_quota_tracker, get_request_governor
from governor.errors import AdmissionDenied, BackendFailure, RetriesExhaustedError
from governor.quota_store import InMemoryQuotaStore
from governor.quota_tracker import QuotaTracker
from governor.request_governor import RequestGovernor


class StubQuizService:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def generate_quiz(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return {"session_id": "s1", "session_title": kwargs["topic"], "quiz": {"questions": []}}

    async def validate_answer(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return {"is_correct": True, "feedback": "Correct! 👏"}

    async def history(self, session_id):
        return [{"session_id": session_id, "prompt": {}, "response": {}}]

    async def list_sessions(self):
        return [{"session_id": "s1", "title": "Cells"}]

    async def delete_session(self, session_id):
        return 2


@pytest.fixture
def tracker():
    return QuotaTracker(InMemoryQuotaStore(), minute_quota=2, now=lambda: datetime(2024, 3, 10, 12, 0))


def _client(svc, tracker):
    app.dependency_overrides[get_quiz_service] = lambda: svc
    app.dependency_overrides[get_quota_tracker] = lambda: tracker
    app.dependency_overrides[get_request_governor] = lambda: RequestGovernor(min_interval=30.0)
    return TestClient(app)


@pytest.fixture(autouse=True)
def _clear_overrides():
    yield
    app.dependency_overrides.clear()


def test_api_status_reads_through_quota_check(tracker):
    client = _client(StubQuizService(), tracker)
    r = client.get("/api/chat/api-status")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "available"
    assert (body["requests_this_minute"], body["minute_quota"]) == (0, 2)
    assert (body["requests_today"], body["daily_quota"]) == (0, 120)
    assert body["governor"]["queue_depth"] == 0

    tracker.record()
    tracker.record()
    body = client.get("/api/chat/api-status").json()
    assert body["status"] == "limited"
    assert body["time_to_reset"] == 60_000
    assert "60 seconds" in body["message"]


def test_quiz_admission_denied_is_a_busy_response(tracker):
    client = _client(StubQuizService(error=AdmissionDenied(time_to_reset_ms=12_300)), tracker)
    r = client.post("/api/chat/quiz", data={"topic": "Cells", "question_type": "multiple-choice"})
    assert r.status_code == 429
    assert r.headers["Retry-After"] == "13"
    assert r.json()["retry_after"] == 13
    assert r.json()["reason"] == "quota_exceeded"
    assert r.headers["X-Request-Id"]


def test_quiz_retries_exhausted_is_a_busy_response(tracker):
    client = _client(StubQuizService(error=RetriesExhaustedError(attempts=4, retry_after=40.0)), tracker)
    r = client.post("/api/chat/quiz", data={"topic": "Cells"})
    assert r.status_code == 429
    assert r.json()["reason"] == "rate_limited"
    assert r.json()["retry_after"] == 40


def test_backend_failure_is_a_generic_processing_error(tracker):
    client = _client(StubQuizService(error=BackendFailure("gemini error 400", status_code=400)), tracker)
    r = client.post("/api/chat/quiz", data={"topic": "Cells"})
    assert r.status_code == 502
    assert r.json()["error"] == "processing_error"


def test_quiz_form_is_forwarded_to_service(tracker):
    svc = StubQuizService()
    client = _client(svc, tracker)
    r = client.post("/api/chat/quiz", data={"topic": "Cells", "question_type": "true-false", "question_count": "3"})
    assert r.status_code == 200
    assert r.json()["session_title"] == "Cells"
    assert svc.calls[0]["question_count"] == 3
    assert svc.calls[0]["document"] is None


def test_quiz_rejects_unknown_question_type_and_empty_material(tracker):
    client = _client(StubQuizService(), tracker)
    assert client.post("/api/chat/quiz", data={"topic": "Cells", "question_type": "essay"}).status_code == 400
    r = client.post("/api/chat/quiz", data={"question_type": "open-ended"})
    assert r.status_code == 400
    assert r.json()["detail"] == "missing_topic_or_document"


def test_quiz_rejects_unsupported_upload(tracker):
    client = _client(StubQuizService(), tracker)
    r = client.post(
        "/api/chat/quiz",
        data={"topic": "Cells"},
        files={"document": ("notes.zip", b"PK\x03\x04", "application/zip")},
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "unsupported_document_type"


def test_validate_answer(tracker):
    svc = StubQuizService()
    client = _client(svc, tracker)
    r = client.post("/api/chat/validate", json={
        "session_id": "s1", "question_index": 0, "user_answer": "a",
        "question": {"question": "2+2?"}, "correct_answer": "a", "question_type": "multiple-choice",
    })
    assert r.status_code == 200
    assert r.json()["is_correct"] is True
    assert svc.calls[0]["correct_answer"] == "a"


def test_sessions_endpoints(tracker):
    client = _client(StubQuizService(), tracker)
    assert client.get("/api/chat/history").status_code == 400
    assert client.get("/api/chat/history", params={"session_id": "s1"}).json()["conversations"][0]["session_id"] == "s1"
    assert client.get("/api/chat/sessions").json()["sessions"][0]["title"] == "Cells"
    r = client.delete("/api/chat/sessions/s1")
    assert r.json() == {"ok": True, "session_id": "s1", "conversations_removed": 2}


class LoopCheckingTracker(QuotaTracker):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.on_loop = []

    def check(self):
        try:
            asyncio.get_running_loop()
            self.on_loop.append(True)
        except RuntimeError:
            self.on_loop.append(False)
        return super().check()


def test_api_status_reads_quota_on_the_event_loop():
    tracker = LoopCheckingTracker(InMemoryQuotaStore(), now=lambda: datetime(2024, 3, 10, 12, 0))
    client = _client(StubQuizService(), tracker)
    assert client.get("/api/chat/api-status").status_code == 200
    assert tracker.on_loop == [True]


def test_health_reports_probe_and_missing_components(monkeypatch):
    import app.routers.health as health

    monkeypatch.setattr(health, "_firestore_probe", lambda: {"ok": True, "latency_ms": 3})
    r = TestClient(app).get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["firestore_ok"] is True
    assert body["quota_store"] == {"ready": False}
    assert body["ok"] is False
