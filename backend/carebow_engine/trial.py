from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from memory.record_store import RecordStore
from memory.time_utils import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

NAMESPACE = "access"
MAX_FREE_QUESTIONS = 3
TRIAL_DAYS = 3


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    code: str
    message: str


def _empty_state(user_id: str) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "has_subscription": False,
        "free_questions_used": 0,
        "trial_start_date": None,
        "trial_end_date": None,
        "has_used_trial": False,
    }


class TrialGate:
    def __init__(
        self,
        records: RecordStore,
        *,
        max_free_questions: int = MAX_FREE_QUESTIONS,
        trial_days: int = TRIAL_DAYS,
    ) -> None:
        self._records = records
        self.max_free_questions = max_free_questions
        self.trial_days = trial_days
        self._states: dict[str, dict[str, Any]] = {
            user_id: _empty_state(user_id) | payload for user_id, payload in records.load_all(NAMESPACE).items()
        }

    def _state(self, user_id: str) -> dict[str, Any]:
        if user_id not in self._states:
            self._states[user_id] = _empty_state(user_id)
        return self._states[user_id]

    def _commit(self, state: dict[str, Any]) -> None:
        self._records.save(namespace=NAMESPACE, key=state["user_id"], payload=state)

    def get_state(self, user_id: str, *, now: datetime | None = None) -> dict[str, Any]:
        state = dict(self._state(user_id))
        state["max_free_questions"] = self.max_free_questions
        state["is_trial_active"] = self.is_trial_active(user_id, now=now)
        state["trial_days_remaining"] = self.trial_days_remaining(user_id, now=now)
        state["can_ask_question"] = self.can_ask_question(user_id, now=now)
        state["can_access_premium_features"] = self.can_access_premium_features(user_id, now=now)
        return state

    def is_trial_active(self, user_id: str, *, now: datetime | None = None) -> bool:
        state = self._state(user_id)
        start = parse_iso(state["trial_start_date"])
        end = parse_iso(state["trial_end_date"])
        if start is None or end is None:
            return False
        return (now or utc_now()) < end

    def trial_days_remaining(self, user_id: str, *, now: datetime | None = None) -> int:
        end = parse_iso(self._state(user_id)["trial_end_date"])
        if end is None:
            return 0
        remaining = end - (now or utc_now())
        if remaining.total_seconds() <= 0:
            return 0
        return max(0, math.ceil(remaining.total_seconds() / 86400))

    def check(self, user_id: str, *, now: datetime | None = None) -> GateDecision:
        state = self._state(user_id)
        if state["has_subscription"]:
            return GateDecision(allowed=True, code="subscribed", message="Subscription active.")
        if self.is_trial_active(user_id, now=now):
            return GateDecision(allowed=True, code="trial_active", message="Free trial active.")
        if not state["has_used_trial"] and not state["trial_start_date"]:
            return GateDecision(allowed=True, code="trial_available", message="Trial starts with the first question.")
        if state["free_questions_used"] < self.max_free_questions:
            return GateDecision(allowed=True, code="free_questions", message="Free question available.")
        return GateDecision(
            allowed=False,
            code="subscription_required",
            message="Your free trial has ended. Subscribe to keep asking CareBow.",
        )

    def can_ask_question(self, user_id: str, *, now: datetime | None = None) -> bool:
        return self.check(user_id, now=now).allowed

    def can_access_premium_features(self, user_id: str, *, now: datetime | None = None) -> bool:
        return bool(self._state(user_id)["has_subscription"]) or self.is_trial_active(user_id, now=now)

    def start_trial(self, user_id: str, *, now: datetime | None = None) -> dict[str, Any]:
        state = self._state(user_id)
        if state["has_used_trial"]:
            return dict(state)
        start = now or utc_now()
        state["trial_start_date"] = to_iso(start)
        state["trial_end_date"] = to_iso(start + timedelta(days=self.trial_days))
        state["has_used_trial"] = True
        self._commit(state)
        logger.info("Started %s-day trial for %s", self.trial_days, user_id)
        return dict(state)

    def record_question(self, user_id: str, *, now: datetime | None = None) -> dict[str, Any]:
        state = self._state(user_id)
        if not state["has_used_trial"] and not state["trial_start_date"]:
            self.start_trial(user_id, now=now)
        state["free_questions_used"] += 1
        self._commit(state)
        return dict(state)

    def set_subscription(self, user_id: str, active: bool) -> dict[str, Any]:
        state = self._state(user_id)
        state["has_subscription"] = bool(active)
        self._commit(state)
        return dict(state)
