from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field

from app.dependencies import get_quiz_service
from config.settings import settings
from documents.extractor import ALLOWED_TYPES
from models.schema import QUESTION_TYPES
from quiz.service import QuizService, UploadedDocument

router = APIRouter()


class ValidateRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=128)
    question_index: int = Field(..., ge=0)
    user_answer: str = Field(default="", max_length=10000)
    question: Dict[str, Any] = Field(default_factory=dict)
    correct_answer: Optional[Any] = None
    question_type: str = Field(default="multiple-choice")


async def _read_upload(document: UploadFile) -> UploadedDocument:
    content_type = (document.content_type or "").lower()
    if content_type not in ALLOWED_TYPES:
        raise HTTPException(status_code=400, detail="unsupported_document_type")
    data = await document.read(settings.UPLOAD_MAX_BYTES + 1)
    if len(data) > settings.UPLOAD_MAX_BYTES:
        raise HTTPException(status_code=413, detail="document_too_large")
    return UploadedDocument(filename=document.filename or "", content_type=content_type, data=data)


@router.post("/quiz")
async def generate_quiz(
    topic: str = Form(default=""),
    question_type: str = Form(default="multiple-choice"),
    question_count: Optional[int] = Form(default=None, ge=1, le=50),
    session_id: Optional[str] = Form(default=None),
    document_content: str = Form(default=""),
    document: Optional[UploadFile] = File(default=None),
    svc: QuizService = Depends(get_quiz_service),
):
    if question_type not in QUESTION_TYPES:
        raise HTTPException(status_code=400, detail="invalid_question_type")
    uploaded = await _read_upload(document) if document is not None else None
    if not topic and not document_content and uploaded is None:
        raise HTTPException(status_code=400, detail="missing_topic_or_document")
    return await svc.generate_quiz(
        topic=topic,
        question_type=question_type,
        question_count=question_count,
        session_id=session_id or None,
        document_content=document_content,
        document=uploaded,
    )


@router.post("/validate")
async def validate_answer(req: ValidateRequest, svc: QuizService = Depends(get_quiz_service)):
    if req.question_type not in QUESTION_TYPES:
        raise HTTPException(status_code=400, detail="invalid_question_type")
    return await svc.validate_answer(
        session_id=req.session_id,
        question_index=req.question_index,
        user_answer=req.user_answer,
        question=req.question,
        correct_answer=req.correct_answer,
        question_type=req.question_type,
    )
