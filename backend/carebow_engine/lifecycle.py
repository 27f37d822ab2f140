from __future__ import annotations

from .models import PHASES, ConversationState


class ConversationStateError(Exception):
    pass


class PhaseMachine:
    _TRANSITIONS = {
        "initial": {"gathering", "emergency", "completed"},
        "gathering": {"gathering", "assessing", "emergency", "completed"},
        "assessing": {"guidance", "emergency", "completed"},
        "guidance": {"service_routing", "emergency", "completed"},
        "service_routing": {"service_routing", "emergency", "completed"},
        "emergency": {"emergency", "completed"},
        "completed": set(),
    }

    def can_transition(self, current: str, next_phase: str) -> bool:
        return next_phase in self._TRANSITIONS.get(current, set())

    def transition(self, state: ConversationState, next_phase: str) -> str:
        if next_phase not in PHASES:
            raise ConversationStateError(f"Unknown phase: {next_phase}")
        current = state.phase
        if not self.can_transition(current, next_phase):
            raise ConversationStateError(f"Invalid transition: {current} -> {next_phase}")
        state.phase = next_phase
        return next_phase

    @staticmethod
    def is_terminal(phase: str) -> bool:
        return phase == "completed"
