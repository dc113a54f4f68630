"""
Quiz workflow: the only caller of the Gemini backend.

Every backend call goes through the same three steps: the QuotaTracker
pre-check (deny -> AdmissionDenied), QuotaTracker.arecord(), then submission
to the RequestGovernor, which paces and retries the call. Answers that can be
graded locally never touch the quota or the backend.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ai.gemini_client import GeminiClient
from config.settings import settings
from documents.extractor import extract_text
from governor.errors import AdmissionDenied, BackendNotConfigured
from governor.quota_tracker import QuotaTracker
from governor.request_governor import RequestGovernor
from quiz.grading import BUSY_FEEDBACK, UNSTRUCTURED_FEEDBACK, grade_locally, neutral_evaluation
from quiz.parsing import extract_json_object, parse_quiz
from quiz.prompts import build_evaluation_prompt, build_quiz_prompt
from repos.conversation_repo import ConversationRepository
from repos.session_repo import SessionRepository

log = logging.getLogger("studybuddy.quiz")

UNTITLED_QUIZ = "Untitled quiz"


@dataclass
class UploadedDocument:
    filename: str
    content_type: str
    data: bytes


class QuizService:
    def __init__(
        self,
        tracker: QuotaTracker,
        governor: RequestGovernor,
        gemini: Optional[GeminiClient],
        sessions: SessionRepository,
        conversations: ConversationRepository,
        extract: Callable[[bytes, str], str] = extract_text,
    ):
        self.tracker = tracker
        self.governor = governor
        self.gemini = gemini
        self.sessions = sessions
        self.conversations = conversations
        self.extract = extract

    def _require_backend(self) -> GeminiClient:
        if self.gemini is None:
            raise BackendNotConfigured()
        return self.gemini

    async def _admit(self, purpose: str) -> None:
        status = self.tracker.check()
        if status.is_quota_exceeded:
            log.warning(
                "admission_denied",
                extra={"extra": {"event": "admission_denied", "purpose": purpose, "time_to_reset_ms": status.time_to_reset_ms}},
            )
            raise AdmissionDenied(status.time_to_reset_ms)
        recorded = await self.tracker.arecord()
        if recorded.is_quota_exceeded:
            # Counted and flagged, but the call still goes out.
            log.warning(
                "quota_overflow_admitted",
                extra={"extra": {"event": "quota_overflow_admitted", "purpose": purpose, "requests_this_minute": recorded.state.requests_this_minute}},
            )

    async def _generate(self, prompt: str) -> str:
        gemini = self._require_backend()
        return await self.governor.submit(lambda: gemini.generate(prompt))

    async def generate_quiz(
        self,
        topic: str,
        question_type: str,
        question_count: Optional[int] = None,
        session_id: Optional[str] = None,
        document_content: str = "",
        document: Optional[UploadedDocument] = None,
    ) -> Dict[str, Any]:
        self._require_backend()
        content = document_content or ""
        if document is not None:
            content = await asyncio.to_thread(self.extract, document.data, document.content_type)

        await self._admit("quiz")

        title = topic or UNTITLED_QUIZ
        count = question_count or settings.DEFAULT_QUESTION_COUNT
        prompt = build_quiz_prompt(topic, question_type, count, content, settings.PROMPT_CONTENT_MAX_CHARS)

        if not session_id:
            session_id = await asyncio.to_thread(self.sessions.create, title, question_type, topic)

        text = await self._generate(prompt)
        quiz = parse_quiz(text)
        if "raw" in quiz:
            log.warning("quiz_unstructured", extra={"extra": {"event": "quiz_unstructured", "session_id": session_id, "chars": len(text)}})

        await asyncio.to_thread(
            self.conversations.add,
            session_id,
            {"topic": topic, "question_type": question_type, "question_count": count, "has_document": document is not None},
            quiz,
        )
        return {"session_id": session_id, "session_title": title, "quiz": quiz}

    async def _store_answer(self, session_id: str, answer: Dict[str, Any]) -> None:
        stored = await asyncio.to_thread(self.conversations.append_user_answer, session_id, answer)
        if not stored:
            log.info("answer_without_conversation", extra={"extra": {"event": "answer_without_conversation", "session_id": session_id}})

    async def validate_answer(
        self,
        session_id: str,
        question_index: int,
        user_answer: str,
        question: Dict[str, Any],
        correct_answer: Any = None,
        question_type: str = "multiple-choice",
    ) -> Dict[str, Any]:
        if correct_answer is not None:
            result = grade_locally(question_type, user_answer, correct_answer, question.get("explanation"))
            await self._store_answer(session_id, {
                "question_index": question_index,
                "user_answer": user_answer,
                "correct": result["is_correct"],
            })
            return result

        self._require_backend()
        try:
            await self._admit("evaluation")
        except AdmissionDenied:
            result = neutral_evaluation(BUSY_FEEDBACK)
            await self._store_answer(session_id, {
                "question_index": question_index,
                "user_answer": user_answer,
                "correct": None,
                "score": result["score"],
            })
            return result

        text = await self._generate(build_evaluation_prompt(question, user_answer))
        evaluation = extract_json_object(text)
        if evaluation is None:
            log.warning("evaluation_unstructured", extra={"extra": {"event": "evaluation_unstructured", "session_id": session_id}})
            return neutral_evaluation(UNSTRUCTURED_FEEDBACK)

        await self._store_answer(session_id, {
            "question_index": question_index,
            "user_answer": user_answer,
            "correct": evaluation.get("is_correct"),
            "score": evaluation.get("score"),
        })
        return evaluation

    async def history(self, session_id: str) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.conversations.list_for_session, session_id)

    async def list_sessions(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.sessions.list_recent, settings.SESSIONS_LIST_LIMIT)

    async def delete_session(self, session_id: str) -> int:
        await asyncio.to_thread(self.sessions.delete, session_id)
        removed = await asyncio.to_thread(self.conversations.delete_for_session, session_id)
        log.info("session_deleted", extra={"extra": {"event": "session_deleted", "session_id": session_id, "conversations": removed}})
        return removed
