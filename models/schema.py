# Centralized collection names to prevent drift.

COL_SYSTEM = "system"
DOC_QUOTA_STATE = "gemini_quota_state"  # system/gemini_quota_state

COL_SESSIONS = "sessions"
COL_CONVERSATIONS = "conversations"  # conversations/{id}, filtered by session_id

QUESTION_TYPES = ("multiple-choice", "true-false", "open-ended")
