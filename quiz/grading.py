from __future__ import annotations

from typing import Any, Dict, Optional

NEUTRAL_SCORE = 5

BUSY_FEEDBACK = (
    "The system is under heavy demand and cannot grade your answer in detail right now. "
    "Compare your answer with the model answer provided. 🧠"
)
UNSTRUCTURED_FEEDBACK = (
    "We could not grade your answer precisely. What matters is that you understood the concept; "
    "review the model answer below. 🧠"
)


def _as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() == "true"


def is_answer_correct(question_type: str, user_answer: str, correct_answer: Any) -> bool:
    if question_type == "true-false":
        return _as_bool(user_answer) == _as_bool(correct_answer)
    return user_answer == correct_answer


def grade_locally(question_type: str, user_answer: str, correct_answer: Any, explanation: Optional[str]) -> Dict[str, Any]:
    """Grade a multiple-choice or true/false answer without calling the backend."""
    correct = is_answer_correct(question_type, user_answer, correct_answer)
    if correct:
        feedback = f"Correct! 👏 {explanation or 'Well done.'}"
    else:
        if question_type == "true-false":
            shown = "True" if _as_bool(correct_answer) else "False"
        else:
            shown = str(correct_answer)
        feedback = f"Incorrect. 😕 The correct answer is {shown}. {explanation or 'Try again.'}"
    return {"is_correct": correct, "feedback": feedback}


def neutral_evaluation(feedback: str) -> Dict[str, Any]:
    return {"is_correct": None, "score": NEUTRAL_SCORE, "feedback": feedback}
