"""
Quota accounting for the Gemini backend.

QuotaTracker answers "should we try at all": it keeps a rolling one-minute
counter and a calendar-day counter against configured ceilings and persists
them through a QuotaStateStore so the counts survive restarts. Pacing and
retrying of the calls that are admitted is the RequestGovernor's job.

Storage is best-effort: read or write failures are logged and the tracker
keeps deciding from its in-memory state.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from governor.errors import QuotaPersistenceError
from governor.quota_state import (
    DEFAULT_DAILY_QUOTA,
    DEFAULT_MINUTE_QUOTA,
    HISTORY_MAX_DAYS,
    MINUTE_WINDOW_MS,
    QuotaHistoryEntry,
    QuotaState,
)
from governor.quota_store import QuotaStateStore

log = logging.getLogger("studybuddy.quota")


def _epoch_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


@dataclass
class QuotaStatus:
    is_quota_exceeded: bool
    state: QuotaState
    time_to_reset_ms: int = 0

    def to_public(self) -> Dict[str, Any]:
        return {
            "status": "limited" if self.is_quota_exceeded else "available",
            "requests_this_minute": self.state.requests_this_minute,
            "minute_quota": self.state.minute_quota,
            "requests_today": self.state.requests_today,
            "daily_quota": self.state.daily_quota,
            "time_to_reset": self.time_to_reset_ms,
        }


class QuotaTracker:
    def __init__(
        self,
        store: QuotaStateStore,
        minute_quota: int = DEFAULT_MINUTE_QUOTA,
        daily_quota: int = DEFAULT_DAILY_QUOTA,
        now: Callable[[], datetime] = datetime.now,
    ):
        if minute_quota <= 0 or daily_quota <= 0:
            raise ValueError("quotas must be positive")
        self.store = store
        self.minute_quota = minute_quota
        self.daily_quota = daily_quota
        self._now = now
        self._state: Optional[QuotaState] = None
        self._save_lock = threading.Lock()
        self._save_seq = 0
        self._saved_seq = 0

    def init(self) -> None:
        state = self._load_state()
        log.info(
            "quota_tracker_ready",
            extra={"extra": {
                "event": "quota_tracker_ready",
                "store": self.store.kind,
                "requests_today": state.requests_today,
                "day_key": state.day_key,
            }},
        )

    def close(self) -> None:
        if self._state is not None:
            self.persist(self._state)

    def _defaults(self) -> QuotaState:
        ts = self._now()
        return QuotaState(
            minute_window_start=_epoch_ms(ts),
            day_key=ts.date().isoformat(),
            minute_quota=self.minute_quota,
            daily_quota=self.daily_quota,
            last_update=ts.isoformat(),
        )

    def _load_state(self) -> QuotaState:
        if self._state is not None:
            return self._state
        try:
            state = self.store.load()
        except QuotaPersistenceError as e:
            log.warning(
                "quota_state_load_failed",
                extra={"extra": {"event": "quota_state_load_failed", "store": self.store.kind, "message": str(e)}},
            )
            state = None
        if state is None:
            state = self._defaults()
        elif (state.minute_quota, state.daily_quota) != (self.minute_quota, self.daily_quota):
            # Configuration wins over whatever ceilings were persisted.
            state.minute_quota = self.minute_quota
            state.daily_quota = self.daily_quota
        self._state = state
        return state

    def persist(self, state: QuotaState) -> None:
        try:
            self.store.save(state)
        except QuotaPersistenceError as e:
            log.error(
                "quota_state_save_failed",
                extra={"extra": {"event": "quota_state_save_failed", "store": self.store.kind, "message": str(e)}},
            )

    @staticmethod
    def _time_to_reset(state: QuotaState, now_ms: int) -> int:
        return max(0, MINUTE_WINDOW_MS - (now_ms - state.minute_window_start))

    def record(self, persist: bool = True) -> QuotaStatus:
        """Count one outbound call and report whether it went over quota.

        The call is counted even when it exceeds the quota; the flag tells the
        caller it overflowed. With ``persist=False`` the caller is responsible
        for saving the returned snapshot.
        """
        state = self._load_state()
        ts = self._now()
        now_ms = _epoch_ms(ts)
        today = ts.date().isoformat()

        if state.day_key != today:
            state.history.append(QuotaHistoryEntry(
                date=state.day_key or today,
                requests=state.requests_today,
                quota_exceeds=state.quota_exceeded_count,
            ))
            state.history = state.history[-HISTORY_MAX_DAYS:]
            state.day_key = today
            state.requests_today = 0
            state.quota_exceeded_count = 0

        if now_ms - state.minute_window_start >= MINUTE_WINDOW_MS:
            state.minute_window_start = now_ms
            state.requests_this_minute = 0

        state.requests_today += 1
        state.requests_this_minute += 1
        state.last_update = ts.isoformat()

        exceeded = state.requests_this_minute > state.minute_quota or state.requests_today >= state.daily_quota
        if exceeded:
            state.quota_exceeded_count += 1
            log.warning(
                "quota_exceeded",
                extra={"extra": {
                    "event": "quota_exceeded",
                    "requests_this_minute": state.requests_this_minute,
                    "minute_quota": state.minute_quota,
                    "requests_today": state.requests_today,
                    "daily_quota": state.daily_quota,
                }},
            )

        if persist:
            self.persist(state)
        return QuotaStatus(
            is_quota_exceeded=exceeded,
            state=state.model_copy(deep=True),
            time_to_reset_ms=self._time_to_reset(state, now_ms) if exceeded else 0,
        )

    async def arecord(self) -> QuotaStatus:
        """record() for request handlers: counting stays on the loop, the save runs in a worker thread."""
        status = self.record(persist=False)
        self._save_seq += 1
        await asyncio.to_thread(self._save_snapshot, self._save_seq, status.state)
        return status

    def _save_snapshot(self, seq: int, snapshot: QuotaState) -> None:
        with self._save_lock:
            # A slower thread must not overwrite a newer snapshot.
            if seq < self._saved_seq:
                return
            self._saved_seq = seq
            self.persist(snapshot)

    def check(self) -> QuotaStatus:
        """Admission pre-check. Read-only: no rollover is applied and nothing is saved.

        Uses ``>=`` where record() uses ``>``, so a request is turned away one
        slot before record() would flag it.
        """
        state = self._load_state()
        now_ms = _epoch_ms(self._now())
        snapshot = state.model_copy(deep=True)

        if now_ms - state.minute_window_start >= MINUTE_WINDOW_MS:
            return QuotaStatus(is_quota_exceeded=False, state=snapshot, time_to_reset_ms=0)

        exceeded = state.requests_this_minute >= state.minute_quota
        return QuotaStatus(
            is_quota_exceeded=exceeded,
            state=snapshot,
            time_to_reset_ms=self._time_to_reset(state, now_ms) if exceeded else 0,
        )

    def may_proceed(self) -> bool:
        return not self.check().is_quota_exceeded
