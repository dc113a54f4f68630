from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

# Gemini tends to wrap the object in prose or ``` fences; take the outermost braces.
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

QUIZ_FALLBACK_ERROR = "Could not generate a structured quiz. Please try again."


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    m = _JSON_OBJECT_RE.search(text or "")
    if not m:
        return None
    try:
        data = json.loads(m.group(0))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def parse_quiz(text: str) -> Dict[str, Any]:
    """Structured quiz, or the unstructured fallback carrying the raw answer."""
    data = extract_json_object(text)
    if data is None:
        return {"raw": text, "error": QUIZ_FALLBACK_ERROR}
    return data
