from __future__ import annotations

from datetime import timedelta

import pytest

from memory import HealthMemoryError, MemoryCandidateError, MemoryService
from memory.time_utils import utc_now


def _ingest(memory: MemoryService, episode_id: str, **overrides):
    payload = {
        "member_id": "member-1",
        "episode_id": episode_id,
        "summary_text": "Headache; duration 1-2 days; severity 4/10",
        "urgency_level": "monitor",
        "primary_symptom": "Headache",
        "severity": 4,
        "symptoms": ["Headache"],
        "chronic_conditions": [],
        "medications": [],
        "allergies": [],
    }
    payload.update(overrides)
    return memory.ingest_conversation(**payload)


def test_direct_edits_dedupe_by_name(memory_service):
    health = memory_service.health
    first = health.add_item(member_id="member-1", kind="conditions", payload={"name": "Asthma"})
    again = health.add_item(
        member_id="member-1",
        kind="conditions",
        payload={"name": "  asthma ", "notes": "seasonal"},
        source="doctor_confirmed",
    )
    items = health.list_items(member_id="member-1", kind="conditions")
    assert len(items) == 1
    assert again["id"] == first["id"]
    assert items[0]["notes"] == "seasonal"
    assert items[0]["source"] == "doctor_confirmed"

    updated = health.update_item(
        member_id="member-1",
        kind="conditions",
        item_id=first["id"],
        updates={"notes": "exercise induced"},
    )
    assert updated["notes"] == "exercise induced"
    assert health.remove_item(member_id="member-1", kind="conditions", item_id=first["id"])
    assert not health.remove_item(member_id="member-1", kind="conditions", item_id=first["id"])


def test_invalid_memory_writes_raise(memory_service):
    health = memory_service.health
    with pytest.raises(HealthMemoryError):
        health.add_item(member_id="member-1", kind="hobbies", payload={"name": "chess"})
    with pytest.raises(HealthMemoryError):
        health.add_item(member_id="member-1", kind="allergies", payload={"substance": "latex"}, source="rumour")
    with pytest.raises(HealthMemoryError):
        health.add_item(member_id="member-1", kind="allergies", payload={"name": "latex"})
    with pytest.raises(HealthMemoryError):
        health.get_member("../etc")
    with pytest.raises(HealthMemoryError):
        health.update_item(member_id="member-1", kind="medications", item_id="missing", updates={})


def test_member_health_context_feeds_conversations(memory_service):
    health = memory_service.health
    health.add_item(member_id="member-1", kind="conditions", payload={"name": "Hypertension"})
    health.add_item(member_id="member-1", kind="medications", payload={"name": "Lisinopril"})
    health.add_item(member_id="member-1", kind="allergies", payload={"substance": "Penicillin"})
    health.add_recent_event(member_id="member-1", description="Started a new job")

    context = health.get_member_health_context("member-1")
    assert context["chronic_conditions"] == ["Hypertension"]
    assert context["medications"] == ["Lisinopril"]
    assert context["allergies"] == ["Penicillin"]
    assert context["recent_events"] == ["Started a new job"]
    assert context["recurring_symptoms"] == []


def test_ingestion_proposes_unknown_facts_once(memory_service):
    memory_service.health.add_item(member_id="member-1", kind="medications", payload={"name": "Ibuprofen"})
    created = _ingest(
        memory_service,
        "session_1",
        chronic_conditions=["Asthma"],
        medications=["ibuprofen", "Albuterol"],
        allergies=["Peanuts"],
    )
    assert [(row["type"], row["content"]) for row in created] == [
        ("condition", "Asthma"),
        ("medication", "Albuterol"),
        ("allergy", "Peanuts"),
    ]
    assert {row["confidence"] for row in created} == {0.8, 0.7, 0.9}

    repeat = _ingest(memory_service, "session_2", chronic_conditions=["asthma"])
    assert [row["type"] for row in repeat] == ["symptom_pattern"]
    summaries = memory_service.health.get_conversation_summaries(member_id="member-1")
    assert [row["episode_id"] for row in summaries] == ["session_2", "session_1"]


def test_recurring_symptom_is_tracked(memory_service):
    _ingest(memory_service, "session_1")
    _ingest(memory_service, "session_2", severity=6)

    record = memory_service.health.get_member("member-1")
    pattern = record["patterns"][0]
    assert pattern["occurrences"] == 2
    assert pattern["average_severity"] == 5.0
    assert pattern["episode_ids"] == ["session_1", "session_2"]
    assert memory_service.health.get_member_health_context("member-1")["recurring_symptoms"] == ["Headache"]


def test_candidates_must_be_accepted_before_promotion(memory_service):
    created = _ingest(memory_service, "session_1", chronic_conditions=["Asthma"], allergies=["Latex"])
    condition, allergy = created

    with pytest.raises(MemoryCandidateError):
        memory_service.promote_candidate(member_id="member-1", candidate_id=condition["id"])

    memory_service.process_candidate(member_id="member-1", candidate_id=condition["id"], accepted=True)
    memory_service.process_candidate(member_id="member-1", candidate_id=allergy["id"], accepted=False)
    with pytest.raises(MemoryCandidateError):
        memory_service.process_candidate(member_id="member-1", candidate_id=condition["id"], accepted=False)

    promoted = memory_service.promote_candidate(member_id="member-1", candidate_id=condition["id"])
    assert promoted["candidate"]["promoted"]
    assert promoted["item"]["name"] == "Asthma"
    assert promoted["item"]["source"] == "conversation_extracted"

    with pytest.raises(MemoryCandidateError):
        memory_service.promote_candidate(member_id="member-1", candidate_id=condition["id"])
    with pytest.raises(MemoryCandidateError):
        memory_service.promote_candidate(member_id="member-1", candidate_id=allergy["id"])
    assert memory_service.health.list_items(member_id="member-1", kind="allergies") == []
    assert memory_service.health.get_candidates(member_id="member-1", pending_only=True) == []


def test_symptom_pattern_promotion_confirms_without_recounting(memory_service):
    _ingest(memory_service, "session_1")
    (candidate,) = _ingest(memory_service, "session_2")
    memory_service.process_candidate(member_id="member-1", candidate_id=candidate["id"], accepted=True)
    promoted = memory_service.promote_candidate(member_id="member-1", candidate_id=candidate["id"])
    assert promoted["item"]["confirmed"]
    assert promoted["item"]["occurrences"] == 2


def test_old_summaries_expire(memory_service):
    memory_service.health.add_conversation_summary(
        member_id="member-1",
        episode_id="session_old",
        summary_text="Old cough",
        created_at=utc_now() - timedelta(days=45),
    )
    memory_service.health.add_conversation_summary(
        member_id="member-1",
        episode_id="session_new",
        summary_text="New cough",
    )
    summaries = memory_service.health.get_conversation_summaries(member_id="member-1")
    assert [row["episode_id"] for row in summaries] == ["session_new"]


def test_memory_survives_restart_and_clear(db, records, memory_service):
    memory_service.health.add_item(member_id="member-1", kind="allergies", payload={"substance": "Latex"})
    restarted = MemoryService(db, records)
    assert restarted.health.list_items(member_id="member-1", kind="allergies")[0]["substance"] == "Latex"

    restarted.health.clear_member("member-1")
    assert MemoryService(db, records).health.list_items(member_id="member-1", kind="allergies") == []


def test_family_history_is_kept_apart_from_own_conditions(memory_service):
    (candidate,) = _ingest(memory_service, "session_1", family_history=["Diabetes"])
    assert candidate["type"] == "family_history"
    memory_service.process_candidate(member_id="member-1", candidate_id=candidate["id"], accepted=True)
    promoted = memory_service.promote_candidate(member_id="member-1", candidate_id=candidate["id"])
    assert promoted["item"]["family_history"] is True

    context = memory_service.health.get_member_health_context("member-1")
    assert context["family_history"] == ["Diabetes"]
    assert context["chronic_conditions"] == []

    assert _ingest(memory_service, "session_2", primary_symptom="", family_history=["diabetes"]) == []
