from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from memory.record_store import RecordStore
from memory.time_utils import to_iso, utc_now

from .lifecycle import ConversationStateError
from .models import AskCarebowSession, new_id
from .services import build_clinical_notes
from .sessions import SessionStore

logger = logging.getLogger(__name__)

ORDER_NAMESPACE = "orders"
REQUEST_NAMESPACE = "service_requests"

ON_REQUEST_SERVICES = frozenset(
    {
        "nursing-care",
        "physiotherapy",
        "caregiver",
        "equipment-rental",
        "specialized-care",
    }
)

DEFAULT_SERVICE_FOR_ACTION = {
    "book_doctor": "doctor-home-visit",
    "video_consult": "video-consultation",
    "request_nurse": "nursing-care",
    "rent_equipment": "equipment-rental",
    "book_lab_test": "lab-test",
}

NON_BOOKABLE_ACTIONS = {
    "call_emergency": "Called emergency services",
    "monitor_at_home": "Monitoring at home",
    "no_action_needed": "No action needed",
}

EMERGENCY_DEEP_LINK = "tel:911"


class ActionRoutingError(Exception):
    pass


@dataclass(frozen=True)
class OrderDraft:
    id: str
    conversation_id: str
    user_id: str
    member_id: str
    service_id: str
    service_title: str
    notes: str
    urgency_level: str
    symptoms_summary: str
    created_at: str
    updated_at: str
    scheduled_date: str | None = None
    duration: str | None = None
    status: str = "draft"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ServiceRequestDraft:
    id: str
    conversation_id: str
    user_id: str
    member_id: str
    service_id: str
    service_title: str
    symptoms_summary: str
    urgency_level: str
    notes: str
    created_at: str
    updated_at: str
    preferred_timing: str | None = None
    status: str = "submitted"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ActionOutcome:
    action_type: str
    kind: str
    record: dict[str, Any] | None
    actual_action_taken: str
    deep_link: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def service_kind(service_id: str) -> str:
    return "on_request" if service_id in ON_REQUEST_SERVICES else "paid"


def booking_deep_link(action: dict[str, Any], conversation_id: str) -> str:
    params = [
        f"service={action.get('service_id') or ''}",
        f"conversation={conversation_id}",
        f"urgency={action.get('urgency')}",
    ]
    prefilled = action.get("prefilled_data") or {}
    if prefilled.get("member_id"):
        params.append(f"member={prefilled['member_id']}")
    if prefilled.get("suggested_date"):
        params.append(f"date={prefilled['suggested_date']}")
    return f"/service-details/{action.get('service_id')}?{'&'.join(params)}"


class ActionRouter:
    """Turns a suggested action into an order draft or a service request linked to its session."""

    def __init__(self, *, sessions: SessionStore, records: RecordStore) -> None:
        self.sessions = sessions
        self._records = records

    def _find_action(self, session: AskCarebowSession, action_type: str) -> dict[str, Any]:
        for action in session.suggested_actions:
            if action.get("type") == action_type:
                return action
        raise ActionRoutingError(f"Action {action_type} was not suggested in session {session.id}")

    def act(
        self,
        session_id: str,
        action_type: str,
        *,
        preferred_timing: str | None = None,
    ) -> ActionOutcome:
        session = self.sessions.require_active(session_id)
        action = self._find_action(session, action_type)

        if action_type in NON_BOOKABLE_ACTIONS:
            description = NON_BOOKABLE_ACTIONS[action_type]
            self.sessions.record_action_taken(session_id, description)
            return ActionOutcome(
                action_type=action_type,
                kind="none",
                record=None,
                actual_action_taken=description,
                deep_link=EMERGENCY_DEEP_LINK if action_type == "call_emergency" else None,
            )

        if session.phase not in {"guidance", "service_routing"}:
            raise ConversationStateError(f"Cannot book services during phase {session.phase}")

        service_id = action.get("service_id") or DEFAULT_SERVICE_FOR_ACTION.get(action_type, "")
        if not service_id:
            raise ActionRoutingError(f"No service mapped for action {action_type}")
        prefilled = action.get("prefilled_data") or {}
        now = to_iso(utc_now())
        summary = build_clinical_notes(session.health_context)

        self.sessions.update_phase(session_id, "service_routing")
        if service_kind(service_id) == "on_request":
            request = ServiceRequestDraft(
                id=new_id("request"),
                conversation_id=session.id,
                user_id=session.user_id,
                member_id=session.member_id,
                service_id=service_id,
                service_title=action["label"],
                symptoms_summary=summary,
                urgency_level=action["urgency"],
                notes=prefilled.get("notes", ""),
                created_at=now,
                updated_at=now,
                preferred_timing=preferred_timing,
            )
            self._records.save(namespace=REQUEST_NAMESPACE, key=request.id, payload=request.to_dict())
            self.sessions.link_request(session_id, request.id)
            logger.info("Linked service request %s to session %s", request.id, session.id)
            record = request.to_dict()
            kind = "service_request"
        else:
            order = OrderDraft(
                id=new_id("order"),
                conversation_id=session.id,
                user_id=session.user_id,
                member_id=session.member_id,
                service_id=service_id,
                service_title=action["label"],
                notes=prefilled.get("notes", ""),
                urgency_level=action["urgency"],
                symptoms_summary=summary,
                created_at=now,
                updated_at=now,
                scheduled_date=prefilled.get("suggested_date"),
                duration=prefilled.get("suggested_duration"),
            )
            self._records.save(namespace=ORDER_NAMESPACE, key=order.id, payload=order.to_dict())
            self.sessions.link_order(session_id, order.id)
            logger.info("Linked order %s to session %s", order.id, session.id)
            record = order.to_dict()
            kind = "order"

        return ActionOutcome(
            action_type=action_type,
            kind=kind,
            record=record,
            actual_action_taken=session.actual_action_taken or "",
            deep_link=booking_deep_link({**action, "service_id": service_id}, session.id),
        )
