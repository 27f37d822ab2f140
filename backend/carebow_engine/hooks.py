from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .models import AskCarebowSession

logger = logging.getLogger(__name__)

BeforeTurnHook = Callable[[AskCarebowSession, str], "HookDecision"]
AfterFinalizeHook = Callable[[AskCarebowSession], None]


@dataclass(frozen=True)
class HookDecision:
    allowed: bool
    code: str = "ok"
    message: str = "allowed"


class HookRunner:
    """Runs checks before a user turn is accepted and side effects after a session is finalized."""

    def __init__(self) -> None:
        self._before_turn: list[BeforeTurnHook] = []
        self._after_finalize: list[AfterFinalizeHook] = []

    def add_before(self, hook: BeforeTurnHook) -> None:
        self._before_turn.append(hook)

    def add_after(self, hook: AfterFinalizeHook) -> None:
        self._after_finalize.append(hook)

    def run_before(self, session: AskCarebowSession, text: str) -> HookDecision:
        for hook in self._before_turn:
            decision = hook(session, text)
            if not decision.allowed:
                return decision
        return HookDecision(allowed=True)

    def run_after(self, session: AskCarebowSession) -> None:
        for hook in self._after_finalize:
            try:
                hook(session)
            except Exception as exc:
                logger.warning("After-finalize hook failed for session %s: %s", session.id, exc)
