from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_quiz_service
from quiz.service import QuizService

router = APIRouter()


@router.get("/history")
async def conversation_history(session_id: str = "", svc: QuizService = Depends(get_quiz_service)):
    if not session_id:
        raise HTTPException(status_code=400, detail="missing_session_id")
    return {"ok": True, "session_id": session_id, "conversations": await svc.history(session_id)}


@router.get("/sessions")
async def list_sessions(svc: QuizService = Depends(get_quiz_service)):
    return {"ok": True, "sessions": await svc.list_sessions()}


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, svc: QuizService = Depends(get_quiz_service)):
    removed = await svc.delete_session(session_id)
    return {"ok": True, "session_id": session_id, "conversations_removed": removed}
