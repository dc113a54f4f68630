from __future__ import annotations

from typing import Any, Dict

_MULTIPLE_CHOICE_SHAPE = """{
  "questions": [
    {
      "question": "Question 1?",
      "options": ["option a", "option b", "option c", "option d"],
      "correct_answer": "a",
      "explanation": "Why this answer is correct"
    }
  ]
}"""

_TRUE_FALSE_SHAPE = """{
  "questions": [
    {
      "statement": "Statement 1",
      "is_true": true,
      "explanation": "Why this statement is true or false"
    }
  ]
}"""

_OPEN_ENDED_SHAPE = """{
  "questions": [
    {
      "question": "Question 1?",
      "model_answer": "Detailed model answer for this question"
    }
  ]
}"""

_EVALUATION_SHAPE = """{
  "is_correct": true,
  "score": 7,
  "feedback": "What the student got right and what could be improved"
}"""


def _content_clause(content: str, max_chars: int) -> str:
    if not content:
        return ""
    return f"Base the questions on the following material:\n{content[:max_chars]}\n"


def build_quiz_prompt(topic: str, question_type: str, count: int, content: str, max_chars: int) -> str:
    material = _content_clause(content, max_chars)
    if question_type == "multiple-choice":
        task = (
            f"Act as a teacher writing a multiple-choice quiz about \"{topic}\".\n{material}"
            f"Write {count} multiple-choice questions with 4 options each (a, b, c, d). "
            "Mark the correct answer clearly and explain why it is correct."
        )
        shape = _MULTIPLE_CHOICE_SHAPE
    elif question_type == "true-false":
        task = (
            f"Act as a teacher writing a true/false quiz about \"{topic}\".\n{material}"
            f"Write {count} statements and state whether each one is true or false, "
            "with an explanation for each."
        )
        shape = _TRUE_FALSE_SHAPE
    else:
        task = (
            f"Act as a teacher writing open-ended questions about \"{topic}\".\n{material}"
            f"Write {count} questions that need explanatory answers and give a complete, "
            "detailed model answer for each."
        )
        shape = _OPEN_ENDED_SHAPE
    return (
        f"{task}\nUse emojis to make the content engaging.\n"
        f"Format your answer as a JSON object with exactly this structure:\n{shape}"
    )


def build_evaluation_prompt(question: Dict[str, Any], user_answer: str) -> str:
    return (
        "Act as a teacher grading answers to open-ended questions.\n\n"
        f"The question is: \"{question.get('question', '')}\"\n\n"
        f"The model answer is: \"{question.get('model_answer', '')}\"\n\n"
        f"The student's answer is: \"{user_answer}\"\n\n"
        "Decide whether the student's answer covers the key points of the model answer. "
        "It does not need to match word for word, but it must show understanding of the topic. "
        "Use emojis to keep the feedback friendly.\n\n"
        f"Format your answer as a JSON object with this structure (score from 0 to 10):\n{_EVALUATION_SHAPE}"
    )
