from __future__ import annotations

import json


def _start(client, headers, member_id: str = "member-1", **profile):
    response = client.post(
        "/sessions",
        headers=headers,
        json={"member_id": member_id, "member_name": "Alex", "member_profile": profile},
    )
    assert response.status_code == 200
    return response.json()


def _say(client, headers, session_id: str, text: str):
    return client.post(f"/sessions/{session_id}/messages", headers=headers, json={"text": text})


def _headache_conversation(client, headers) -> str:
    session = _start(client, headers, age=30)
    for text in ("I've had a mild headache for 2 days", "It comes and goes", "No other symptoms"):
        response = _say(client, headers, session["id"], text)
        assert response.status_code == 200
    return session["id"]


def test_requests_require_identity(client):
    assert client.get("/access").status_code == 401
    assert client.get("/access", headers={"X-User-Id": "../bad"}).status_code == 400


def test_anonymous_demo_user_when_allowed(client, monkeypatch):
    monkeypatch.setenv("ALLOW_ANON", "true")
    response = client.get("/access")
    assert response.status_code == 200
    assert response.json()["user_id"] == "demo-user"


def test_session_lifecycle_over_http(client, auth_headers):
    headers = auth_headers("user-a")
    session = _start(client, headers)
    assert session["is_active"]
    assert session["conversation_state"]["phase"] == "initial"

    duplicate = client.post("/sessions", headers=headers, json={"member_id": "member-1"})
    assert duplicate.status_code == 409

    assert client.get(f"/sessions/{session['id']}", headers=auth_headers("user-b")).status_code == 404
    assert client.get("/sessions/session_missing", headers=headers).status_code == 404

    resumed = client.post(f"/sessions/{session['id']}/resume", headers=headers)
    assert resumed.status_code == 200

    ended = client.post(f"/sessions/{session['id']}/end", headers=headers)
    assert ended.status_code == 200
    assert not ended.json()["is_active"]
    assert ended.json()["session_summary"]["chief_complaint"] == "Not specified"

    assert _say(client, headers, session["id"], "hello?").status_code == 409
    assert client.post(f"/sessions/{session['id']}/resume", headers=headers).status_code == 409


def test_conversation_reaches_guidance(client, auth_headers):
    headers = auth_headers("user-a")
    session = _start(client, headers, age=30)
    first = _say(client, headers, session["id"], "I've had a mild headache for 2 days")
    body = first.json()
    assert body["phase"] == "gathering"
    assert body["messages"][0]["role"] == "user"
    assert body["messages"][-1]["content_type"] == "question"
    assert body["messages"][-1]["quick_options"]

    _say(client, headers, session["id"], "It comes and goes")
    final = _say(client, headers, session["id"], "No other symptoms").json()
    assert final["phase"] == "guidance"
    assert final["triage"]["urgency_level"] == "self_care"
    assert final["guidance"]["disclaimer"]
    assert not final["emergency"]["is_emergency"]

    assert _say(client, headers, session["id"], "   ").status_code == 400


def test_emergency_turn_and_call_action(client, auth_headers):
    headers = auth_headers("user-a")
    session = _start(client, headers, age=72)
    body = _say(client, headers, session["id"], "I have crushing chest pain").json()
    assert body["phase"] == "emergency"
    assert body["emergency"]["is_emergency"]
    assert body["emergency_instructions"]["call_number"] == "911"

    action = client.post(
        f"/sessions/{session['id']}/actions",
        headers=headers,
        json={"action_type": "call_emergency"},
    )
    assert action.status_code == 200
    assert action.json()["outcome"]["deep_link"] == "tel:911"

    unsuggested = client.post(
        f"/sessions/{session['id']}/actions",
        headers=headers,
        json={"action_type": "book_doctor"},
    )
    assert unsuggested.status_code == 400

    listing = client.get("/sessions/emergency", headers=headers).json()["items"]
    assert [row["id"] for row in listing] == [session["id"]]


def test_trial_gate_blocks_when_quota_is_used(client, auth_headers, backend_module):
    backend_module.container.gate.max_free_questions = 1
    backend_module.container.gate.trial_days = 0
    headers = auth_headers("user-a")
    session = _start(client, headers)

    assert _say(client, headers, session["id"], "I have a sore throat").status_code == 200
    access = client.get("/access", headers=headers).json()
    assert access["free_questions_used"] == 1
    assert not access["can_ask_question"]

    blocked = _say(client, headers, session["id"], "It started yesterday")
    assert blocked.status_code == 402
    assert blocked.json()["detail"]["code"] == "subscription_required"

    subscribed = client.post("/access/subscription", headers=headers, json={"active": True})
    assert subscribed.json()["can_ask_question"]
    assert _say(client, headers, session["id"], "It started yesterday").status_code == 200


def test_trial_start_route_is_idempotent(client, auth_headers):
    headers = auth_headers("user-a")
    first = client.post("/access/trial", headers=headers).json()
    second = client.post("/access/trial", headers=headers).json()
    assert first["is_trial_active"]
    assert second["trial_start_date"] == first["trial_start_date"]
    assert second["trial_days_remaining"] == 3


def test_exports_and_annotations(client, auth_headers):
    headers = auth_headers("user-a")
    session_id = _headache_conversation(client, headers)
    client.post(f"/sessions/{session_id}/end", headers=headers)

    text = client.get(f"/sessions/{session_id}/export.txt", headers=headers)
    assert text.status_code == 200
    assert text.headers["content-type"].startswith("text/plain")
    assert "CAREBOW AI HEALTH ASSISTANT - SESSION SUMMARY" in text.text

    export = client.get(f"/sessions/{session_id}/export.json", headers=headers).json()
    assert export["summary"]["chiefComplaint"] == "I've had a mild headache for 2 days"
    assert export["summary"]["triageOutcome"]["urgencyLevel"] == "self_care"

    follow_up = client.post(
        f"/sessions/{session_id}/follow-up",
        headers=headers,
        json={"scheduled_for": "2026-10-22T09:00:00Z"},
    )
    assert follow_up.json()["follow_up_scheduled"]
    cancelled = client.delete(f"/sessions/{session_id}/follow-up", headers=headers)
    assert not cancelled.json()["follow_up_scheduled"]

    notes = client.post(f"/sessions/{session_id}/doctor-notes", headers=headers, json={"recipient": "Dr. Lee"})
    assert notes.json()["doctor_notes_sent"]
    assert "Severity: 3/10" in notes.json()["notes"]

    feedback = client.post(
        f"/sessions/{session_id}/feedback",
        headers=headers,
        json={"was_helpful": True, "rating": 5, "feedback_note": "Clear"},
    )
    assert feedback.json()["feedback"]["rating"] == 5
    bad_rating = client.post(
        f"/sessions/{session_id}/feedback",
        headers=headers,
        json={"was_helpful": True, "rating": 0},
    )
    assert bad_rating.status_code == 400

    stored = client.get(f"/sessions/{session_id}", headers=headers).json()
    assert [row["export_format"] for row in stored["export_history"]] == ["text", "json", "text"]
    with_feedback = client.get("/sessions/with-feedback", headers=headers).json()["items"]
    assert with_feedback[0]["feedback"]["rating"] == 5
    recent = client.get("/sessions/recent", headers=headers).json()["items"]
    assert recent[0]["id"] == session_id
    member = client.get("/members/member-1/sessions", headers=headers).json()["items"]
    assert member[0]["urgency_level"] == "self_care"


def test_message_feedback_routes(client, auth_headers):
    headers = auth_headers("user-a")
    session_id = _headache_conversation(client, headers)
    messages = client.get(f"/sessions/{session_id}", headers=headers).json()["messages"]
    guidance = next(m for m in messages if m["content_type"] == "guidance")

    rated = client.post(
        "/feedback",
        headers=headers,
        json={
            "episode_id": session_id,
            "message_id": guidance["id"],
            "rating": "not_helpful",
            "reason": "too_long",
        },
    )
    assert rated.status_code == 200
    assert rated.json()["message_snippet"] == guidance["text"][:100]

    invalid = client.post(
        "/feedback",
        headers=headers,
        json={"episode_id": session_id, "message_id": guidance["id"], "rating": "sort of"},
    )
    assert invalid.status_code == 400

    summary = client.get("/feedback/summary", headers=headers).json()
    assert summary["reason_breakdown"]["too_long"] == 1
    assert summary["helpful_percentage"] == 0
    episode = client.get(f"/feedback/episodes/{session_id}", headers=headers).json()["items"]
    assert [row["message_id"] for row in episode] == [guidance["id"]]
    assert len(client.get("/feedback/recent", headers=headers).json()["items"]) == 1
    exported = json.loads(client.get("/feedback/export", headers=headers).text)
    assert exported["summary"]["total_feedback"] == 1


def test_health_memory_routes_and_candidate_review(client, auth_headers):
    headers = auth_headers("user-a")
    added = client.post(
        "/members/member-1/health/medications",
        headers=headers,
        json={"payload": {"name": "Metformin", "dose": "500mg"}},
    )
    assert added.status_code == 200
    item_id = added.json()["id"]

    patched = client.patch(
        f"/members/member-1/health/medications/{item_id}",
        headers=headers,
        json={"payload": {"dose": "1000mg"}, "source": "doctor_confirmed"},
    )
    assert patched.json()["dose"] == "1000mg"
    assert client.post("/members/member-1/health/hobbies", headers=headers, json={"payload": {}}).status_code == 400

    session = _start(client, headers, chronic_conditions=["Asthma"])
    _say(client, headers, session["id"], "I have a cough")
    client.post(f"/sessions/{session['id']}/end", headers=headers)

    summaries = client.get("/members/member-1/summaries", headers=headers).json()["items"]
    assert summaries[0]["episode_id"] == session["id"]

    candidates = client.get("/members/member-1/candidates?pending_only=true", headers=headers).json()["items"]
    assert [(row["type"], row["content"]) for row in candidates] == [("condition", "Asthma")]
    candidate_id = candidates[0]["id"]

    early = client.post(f"/members/member-1/candidates/{candidate_id}/promote", headers=headers)
    assert early.status_code == 409
    processed = client.post(
        f"/members/member-1/candidates/{candidate_id}/process",
        headers=headers,
        json={"accepted": True},
    )
    assert processed.json()["accepted_by_user"]
    promoted = client.post(f"/members/member-1/candidates/{candidate_id}/promote", headers=headers)
    assert promoted.status_code == 200

    health = client.get("/members/member-1/health", headers=headers).json()
    assert health["health_context"]["chronic_conditions"] == ["Asthma"]
    assert health["health_context"]["medications"] == ["Metformin"]

    removed = client.delete(f"/members/member-1/health/medications/{item_id}", headers=headers)
    assert removed.json() == {"ok": True}
    missing = client.delete(f"/members/member-1/health/medications/{item_id}", headers=headers)
    assert missing.status_code == 404

    assert client.delete("/members/member-1/health", headers=headers).json() == {"ok": True}
    cleared = client.get("/members/member-1/health", headers=headers).json()
    assert cleared["conditions"] == []


def test_member_profile_types_are_checked(client, auth_headers):
    headers = auth_headers("user-a")
    for profile in ({"age": "seventy"}, {"chronic_conditions": "diabetes"}, {"age": -4}):
        response = client.post(
            "/sessions",
            headers=headers,
            json={"member_id": "member-1", "member_profile": profile},
        )
        assert response.status_code == 422

    session = _start(client, headers, age="70", chronic_conditions=["Diabetes"])
    assert session["member_profile"]["age"] == 70
    assert session["member_profile"]["chronic_conditions"] == ["Diabetes"]


def test_feedback_reads_only_show_own_sessions(client, auth_headers):
    owner = auth_headers("user-a")
    session_id = _headache_conversation(client, owner)
    messages = client.get(f"/sessions/{session_id}", headers=owner).json()["messages"]
    client.post(
        "/feedback",
        headers=owner,
        json={"episode_id": session_id, "message_id": messages[-1]["id"], "rating": "helpful"},
    )

    other = auth_headers("user-z")
    assert client.get("/feedback/summary", headers=other).json()["total_feedback"] == 0
    assert client.get("/feedback/recent", headers=other).json()["items"] == []
    exported = json.loads(client.get("/feedback/export", headers=other).text)
    assert exported["entries"] == []
    assert client.get(f"/feedback/episodes/{session_id}", headers=other).status_code == 404

    assert client.get("/feedback/summary", headers=owner).json()["total_feedback"] == 1


def test_feedback_must_name_a_message_in_the_session(client, auth_headers):
    headers = auth_headers("user-a")
    session_id = _headache_conversation(client, headers)
    missing = client.post(
        "/feedback",
        headers=headers,
        json={"episode_id": session_id, "message_id": "msg_missing", "rating": "helpful"},
    )
    assert missing.status_code == 404
    assert client.get("/feedback/recent", headers=headers).json()["items"] == []
