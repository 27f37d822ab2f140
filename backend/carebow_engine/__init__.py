from .actions import ActionOutcome, ActionRouter, ActionRoutingError
from .conversation import ConversationEngine, TurnBlockedError, TurnResult, memory_ingestion_hook
from .feedback import FeedbackError, FeedbackLedger
from .guidance import GuidanceResponse, SuggestedAction, build_guidance
from .hooks import HookDecision, HookRunner
from .lifecycle import ConversationStateError, PhaseMachine
from .models import AskCarebowSession, ConversationState, HealthContext, Message, SessionSummary
from .questions import has_sufficient_context
from .red_flags import RED_FLAG_SYMPTOMS, EmergencyState, RedFlagDetector
from .services import ServiceRegistry, default_service_registry
from .sessions import ActiveSessionExistsError, InactiveSessionError, SessionNotFoundError, SessionStore
from .summary import format_session_export, format_session_notes, generate_session_summary
from .trial import GateDecision, TrialGate
from .triage import MemberProfile, TriageEngine, TriageResult, calculate_confidence

__all__ = [
    "RED_FLAG_SYMPTOMS",
    "ActionOutcome",
    "ActionRouter",
    "ActionRoutingError",
    "ActiveSessionExistsError",
    "AskCarebowSession",
    "ConversationEngine",
    "ConversationState",
    "ConversationStateError",
    "EmergencyState",
    "FeedbackError",
    "FeedbackLedger",
    "GateDecision",
    "GuidanceResponse",
    "HealthContext",
    "HookDecision",
    "HookRunner",
    "InactiveSessionError",
    "MemberProfile",
    "Message",
    "PhaseMachine",
    "RedFlagDetector",
    "ServiceRegistry",
    "SessionNotFoundError",
    "SessionStore",
    "SessionSummary",
    "SuggestedAction",
    "TrialGate",
    "TriageEngine",
    "TriageResult",
    "TurnBlockedError",
    "TurnResult",
    "build_guidance",
    "calculate_confidence",
    "default_service_registry",
    "format_session_export",
    "format_session_notes",
    "generate_session_summary",
    "has_sufficient_context",
    "memory_ingestion_hook",
]
