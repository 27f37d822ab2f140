from __future__ import annotations

import hashlib
import logging
import os
import re
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel, Field

from carebow_engine import (
    ActionRouter,
    ActionRoutingError,
    ActiveSessionExistsError,
    AskCarebowSession,
    ConversationEngine,
    ConversationStateError,
    FeedbackError,
    FeedbackLedger,
    HookDecision,
    HookRunner,
    InactiveSessionError,
    RedFlagDetector,
    SessionNotFoundError,
    SessionStore,
    TrialGate,
    TriageEngine,
    TurnBlockedError,
    default_service_registry,
    memory_ingestion_hook,
)
from memory import HealthMemoryError, MemoryCandidateError, MemoryService, RecordStore, SQLiteMemoryDB

logger = logging.getLogger(__name__)

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _bootstrap_local_env() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    for candidate in (repo_root / ".env", repo_root / "backend/.env"):
        if candidate.exists():
            _load_local_env_file(candidate)


_bootstrap_local_env()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)
        return default


class MemberProfileModel(BaseModel):
    name: str | None = None
    age: int | None = Field(default=None, ge=0, le=130)
    relationship: str | None = None
    is_pregnant: bool = False
    chronic_conditions: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    family_history: list[str] = Field(default_factory=list)
    profile_completeness: int = Field(default=0, ge=0, le=100)


class StartSessionRequest(BaseModel):
    member_id: str
    member_name: str | None = None
    member_profile: MemberProfileModel = Field(default_factory=MemberProfileModel)


class MessageRequest(BaseModel):
    text: str


class ActionRequest(BaseModel):
    action_type: str
    preferred_timing: str | None = None


class FollowUpRequest(BaseModel):
    scheduled_for: str


class DoctorNotesRequest(BaseModel):
    recipient: str | None = None


class SessionFeedbackRequest(BaseModel):
    was_helpful: bool
    rating: int
    feedback_note: str | None = None


class FeedbackRequest(BaseModel):
    episode_id: str
    message_id: str
    rating: str
    reason: str | None = None
    custom_reason: str | None = None


class SubscriptionRequest(BaseModel):
    active: bool = True


class HealthItemPayload(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)
    source: str = "user_reported"


class CandidateDecision(BaseModel):
    accepted: bool


class CareBowApp:
    def __init__(self) -> None:
        db_path = os.getenv(
            "CAREBOW_DB_PATH",
            str((Path(__file__).resolve().parent / "carebow.sqlite")),
        )
        self.db = SQLiteMemoryDB(db_path)
        self.records = RecordStore(self.db)
        self.memory = MemoryService(self.db, self.records)
        self.sessions = SessionStore(self.records)
        self.detector = RedFlagDetector()
        self.triage = TriageEngine(self.detector)
        self.services = default_service_registry()
        self.actions = ActionRouter(sessions=self.sessions, records=self.records)
        self.gate = TrialGate(
            self.records,
            max_free_questions=_int_env("CAREBOW_MAX_FREE_QUESTIONS", 3),
            trial_days=_int_env("CAREBOW_TRIAL_DAYS", 3),
        )
        self.feedback = FeedbackLedger(self.records)

        self.hooks = HookRunner()
        self.hooks.add_before(self._before_turn)
        self.hooks.add_after(memory_ingestion_hook(self.memory))

        self.engine = ConversationEngine(
            sessions=self.sessions,
            detector=self.detector,
            triage=self.triage,
            services=self.services,
            actions=self.actions,
            hooks=self.hooks,
            health_memory=self.memory.health,
        )

    def _before_turn(self, session: AskCarebowSession, text: str) -> HookDecision:
        decision = self.gate.check(session.user_id)
        return HookDecision(allowed=decision.allowed, code=decision.code, message=decision.message)


container = CareBowApp()
app = FastAPI(title="CareBow Backend")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_TRUSTED_USER_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{1,63}$")


def _validated_trusted_user_id(x_user_id: str) -> str:
    candidate = x_user_id.strip()
    if not candidate:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    if not _TRUSTED_USER_ID_RE.fullmatch(candidate):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id")
    return candidate


def get_user_id(auth_header: str | None) -> str:
    if not auth_header:
        if os.getenv("ALLOW_ANON", "false").lower() == "true":
            return "demo-user"
        raise HTTPException(status_code=401, detail="Missing Authorization")
    raw = auth_header.replace("Bearer", "", 1).strip()
    if not raw:
        if os.getenv("ALLOW_ANON", "false").lower() == "true":
            return "demo-user"
        raise HTTPException(status_code=401, detail="Missing Authorization")
    # Bearer token is opaque; long tokens are hashed into a bounded id.
    if len(raw) > 96:
        return f"token_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:24]}"
    return raw


def resolve_user_id(authorization: str | None, x_user_id: str | None) -> str:
    if x_user_id is not None:
        return _validated_trusted_user_id(x_user_id)
    return get_user_id(authorization)


def _owned_session(session_id: str, user_id: str) -> AskCarebowSession:
    try:
        session = container.sessions.get(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if session.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return session


def _owned_episode_ids(user_id: str) -> set[str]:
    return {session.id for session in container.sessions.sessions_for_user(user_id)}


def _domain_error(exc: Exception) -> HTTPException:
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InactiveSessionError, ActiveSessionExistsError, MemoryCandidateError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, TurnBlockedError):
        return HTTPException(status_code=402, detail={"code": exc.code, "message": exc.message})
    return HTTPException(status_code=400, detail=str(exc))


_DOMAIN_ERRORS = (
    InactiveSessionError,
    ActiveSessionExistsError,
    ConversationStateError,
    ActionRoutingError,
    FeedbackError,
    HealthMemoryError,
    TurnBlockedError,
    ValueError,
)


def _summaries(sessions: list[AskCarebowSession]) -> list[dict[str, Any]]:
    return [
        {
            "id": session.id,
            "member_id": session.member_id,
            "member_name": session.member_name,
            "created_at": session.created_at,
            "is_active": session.is_active,
            "phase": session.phase,
            "urgency_level": session.urgency_level,
            "triggered_emergency_flow": session.triggered_emergency_flow,
            "primary_symptom": session.health_context.primary_symptom,
        }
        for session in sessions
    ]


# Sessions


@app.post("/sessions")
def start_session(
    payload: StartSessionRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    profile = {**payload.member_profile.model_dump(), "member_id": payload.member_id}
    try:
        session = container.sessions.start_new_session(
            user_id=user_id,
            member_id=payload.member_id,
            member_name=payload.member_name,
            member_profile=profile,
        )
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return session.to_dict()


@app.get("/sessions/recent")
def recent_sessions(
    limit: int = 10,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    sessions = container.sessions.sessions_for_user(user_id)[: max(0, limit)]
    return {"items": _summaries(sessions)}


@app.get("/sessions/emergency")
def emergency_sessions(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = resolve_user_id(authorization, x_user_id)
    sessions = [s for s in container.sessions.get_emergency_sessions() if s.user_id == user_id]
    return {"items": _summaries(sessions)}


@app.get("/sessions/with-feedback")
def sessions_with_feedback(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    sessions = [s for s in container.sessions.get_sessions_with_feedback() if s.user_id == user_id]
    return {"items": [{**row, "feedback": s.feedback} for row, s in zip(_summaries(sessions), sessions)]}


@app.get("/sessions/{session_id}")
def get_session(
    session_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    return _owned_session(session_id, user_id).to_dict()


@app.post("/sessions/{session_id}/messages")
def post_message(
    session_id: str,
    payload: MessageRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    session = _owned_session(session_id, user_id)
    try:
        result = container.engine.process_user_input(session.id, payload.text)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    container.gate.record_question(user_id)
    return result.to_dict()


@app.post("/sessions/{session_id}/end")
def end_session(
    session_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(session_id, user_id)
    try:
        session = container.engine.finalize_session(session_id)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return session.to_dict()


@app.post("/sessions/{session_id}/resume")
def resume_session(
    session_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(session_id, user_id)
    try:
        session = container.sessions.resume_session(session_id)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return session.to_dict()


@app.post("/sessions/{session_id}/actions")
def act_on_action(
    session_id: str,
    payload: ActionRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(session_id, user_id)
    try:
        outcome, message = container.engine.act_on_suggested_action(
            session_id,
            payload.action_type,
            preferred_timing=payload.preferred_timing,
        )
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return {"outcome": outcome.to_dict(), "message": message.to_dict()}


@app.post("/sessions/{session_id}/follow-up")
def schedule_follow_up(
    session_id: str,
    payload: FollowUpRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(session_id, user_id)
    session = container.sessions.schedule_follow_up(session_id, payload.scheduled_for)
    return {
        "follow_up_scheduled": session.follow_up_scheduled,
        "follow_up_scheduled_for": session.follow_up_scheduled_for,
    }


@app.delete("/sessions/{session_id}/follow-up")
def cancel_follow_up(
    session_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(session_id, user_id)
    session = container.sessions.cancel_follow_up(session_id)
    return {
        "follow_up_scheduled": session.follow_up_scheduled,
        "follow_up_scheduled_for": session.follow_up_scheduled_for,
    }


@app.post("/sessions/{session_id}/doctor-notes")
def send_doctor_notes(
    session_id: str,
    payload: DoctorNotesRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(session_id, user_id)
    notes = container.sessions.get_session_export_text(session_id)
    session = container.sessions.mark_doctor_notes_sent(session_id, payload.recipient)
    return {
        "doctor_notes_sent": session.doctor_notes_sent,
        "doctor_notes_sent_at": session.doctor_notes_sent_at,
        "notes": notes,
    }


@app.post("/sessions/{session_id}/feedback")
def session_feedback(
    session_id: str,
    payload: SessionFeedbackRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(session_id, user_id)
    try:
        session = container.sessions.provide_detailed_feedback(
            session_id,
            was_helpful=payload.was_helpful,
            rating=payload.rating,
            feedback_note=payload.feedback_note,
        )
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return {"feedback": session.feedback}


@app.get("/sessions/{session_id}/export.txt")
def export_session_text(
    session_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(session_id, user_id)
    text = container.sessions.get_session_export_text(session_id)
    container.sessions.export_session(session_id, "text")
    return PlainTextResponse(text)


@app.get("/sessions/{session_id}/export.json")
def export_session_json(
    session_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(session_id, user_id)
    export = container.sessions.get_session_export_json(session_id)
    container.sessions.export_session(session_id, "json")
    return export


@app.get("/members/{member_id}/sessions")
def member_sessions(
    member_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    sessions = [s for s in container.sessions.get_sessions_for_member(member_id) if s.user_id == user_id]
    return {"items": _summaries(sessions)}


# Access


@app.get("/access")
def get_access(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = resolve_user_id(authorization, x_user_id)
    return container.gate.get_state(user_id)


@app.post("/access/trial")
def start_trial(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = resolve_user_id(authorization, x_user_id)
    container.gate.start_trial(user_id)
    return container.gate.get_state(user_id)


@app.post("/access/subscription")
def set_subscription(
    payload: SubscriptionRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    container.gate.set_subscription(user_id, payload.active)
    return container.gate.get_state(user_id)


# Message feedback


@app.post("/feedback")
def submit_feedback(
    payload: FeedbackRequest,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    session = _owned_session(payload.episode_id, user_id)
    message = next((m for m in session.messages if m.id == payload.message_id), None)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    try:
        entry = container.feedback.submit_feedback(
            episode_id=payload.episode_id,
            message_id=payload.message_id,
            rating=payload.rating,
            reason=payload.reason,
            custom_reason=payload.custom_reason,
            message_snippet=message.text,
        )
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return entry.to_dict()


@app.get("/feedback/summary")
def feedback_summary(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = resolve_user_id(authorization, x_user_id)
    return container.feedback.get_feedback_summary(episode_ids=_owned_episode_ids(user_id))


@app.get("/feedback/recent")
def feedback_recent(
    limit: int = 20,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    entries = container.feedback.get_recent_feedback(limit, episode_ids=_owned_episode_ids(user_id))
    return {"items": [entry.to_dict() for entry in entries]}


@app.get("/feedback/episodes/{episode_id}")
def feedback_for_episode(
    episode_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    user_id = resolve_user_id(authorization, x_user_id)
    _owned_session(episode_id, user_id)
    return {"items": [entry.to_dict() for entry in container.feedback.get_feedback_for_episode(episode_id)]}


@app.get("/feedback/export")
def feedback_export(authorization: str | None = Header(default=None), x_user_id: str | None = Header(default=None)):
    user_id = resolve_user_id(authorization, x_user_id)
    content = container.feedback.export_feedback_json(episode_ids=_owned_episode_ids(user_id))
    return Response(content=content, media_type="application/json")


# Health memory


@app.get("/members/{member_id}/health")
def get_health_memory(
    member_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        record = container.memory.health.get_member(member_id)
        context = container.memory.health.get_member_health_context(member_id)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return {**record, "health_context": context}


@app.post("/members/{member_id}/health/{kind}")
def add_health_item(
    member_id: str,
    kind: str,
    payload: HealthItemPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        return container.memory.health.add_item(
            member_id=member_id,
            kind=kind,
            payload=payload.payload,
            source=payload.source,
        )
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc


@app.patch("/members/{member_id}/health/{kind}/{item_id}")
def update_health_item(
    member_id: str,
    kind: str,
    item_id: str,
    payload: HealthItemPayload,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    updates = {**payload.payload, "source": payload.source}
    try:
        return container.memory.health.update_item(member_id=member_id, kind=kind, item_id=item_id, updates=updates)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc


@app.delete("/members/{member_id}/health/{kind}/{item_id}")
def remove_health_item(
    member_id: str,
    kind: str,
    item_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        removed = container.memory.health.remove_item(member_id=member_id, kind=kind, item_id=item_id)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    if not removed:
        raise HTTPException(status_code=404, detail=f"Unknown {kind} entry: {item_id}")
    return {"ok": True}


@app.delete("/members/{member_id}/health")
def clear_health_memory(
    member_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        container.memory.health.clear_member(member_id)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return {"ok": True}


@app.get("/members/{member_id}/candidates")
def list_candidates(
    member_id: str,
    pending_only: bool = False,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        items = container.memory.health.get_candidates(member_id=member_id, pending_only=pending_only)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return {"items": items}


@app.post("/members/{member_id}/candidates/{candidate_id}/process")
def process_candidate(
    member_id: str,
    candidate_id: str,
    payload: CandidateDecision,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        return container.memory.process_candidate(
            member_id=member_id,
            candidate_id=candidate_id,
            accepted=payload.accepted,
        )
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc


@app.post("/members/{member_id}/candidates/{candidate_id}/promote")
def promote_candidate(
    member_id: str,
    candidate_id: str,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        return container.memory.promote_candidate(member_id=member_id, candidate_id=candidate_id)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc


@app.get("/members/{member_id}/summaries")
def list_summaries(
    member_id: str,
    limit: int | None = None,
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    resolve_user_id(authorization, x_user_id)
    try:
        items = container.memory.health.get_conversation_summaries(member_id=member_id, limit=limit)
    except _DOMAIN_ERRORS as exc:
        raise _domain_error(exc) from exc
    return {"items": items}
