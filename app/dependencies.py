from __future__ import annotations

from fastapi import Request

from governor.quota_tracker import QuotaTracker
from governor.request_governor import RequestGovernor
from quiz.service import QuizService

# Components are built once in the app lifespan and parked on app.state.


def get_quota_tracker(request: Request) -> QuotaTracker:
    return request.app.state.quota_tracker


def get_request_governor(request: Request) -> RequestGovernor:
    return request.app.state.request_governor


def get_quiz_service(request: Request) -> QuizService:
    return request.app.state.quiz_service
