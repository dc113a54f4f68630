from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

DEFAULT_MINUTE_QUOTA = 15
DEFAULT_DAILY_QUOTA = 120
HISTORY_MAX_DAYS = 30
MINUTE_WINDOW_MS = 60_000


class QuotaHistoryEntry(BaseModel):
    date: str
    requests: int = Field(default=0, ge=0)
    quota_exceeds: int = Field(default=0, ge=0)


class QuotaState(BaseModel):
    requests_today: int = Field(default=0, ge=0)
    requests_this_minute: int = Field(default=0, ge=0)
    minute_window_start: int = Field(default=0, ge=0)  # epoch ms
    day_key: str = ""  # local calendar date, YYYY-MM-DD
    minute_quota: int = Field(default=DEFAULT_MINUTE_QUOTA, gt=0)
    daily_quota: int = Field(default=DEFAULT_DAILY_QUOTA, gt=0)
    quota_exceeded_count: int = Field(default=0, ge=0)
    last_update: str = ""
    history: List[QuotaHistoryEntry] = Field(default_factory=list)
