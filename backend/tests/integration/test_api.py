# backend/tests/integration/test_api.py
from convoflow.config.settings import settings

API_PREFIX = f"/api/{settings.api_version}/automation"

ASK_SCENARIO = {
    "id": "ASK",
    "name": "Ask name",
    "company_id": "1",
    "priority": "high",
    "triggers": {"keywords": ["register"]},
    "steps": [
        {"id": "q1", "type": "question", "content": "What's your name?", "bind_to": "name"},
        {"id": "m1", "type": "message", "content": "Welcome {{name}}"},
    ],
}


def _inbound(text, conversation_id="CONV1"):
    return {"conversation_id": conversation_id, "customer_id": "CUST1", "company_id": "1", "text": text}


def test_root_and_liveness(test_client):
    assert test_client.get("/").json()["status"] == "operational"
    assert test_client.get("/health/live").json() == {"status": "alive"}


def test_metrics_endpoint(test_client):
    response = test_client.get("/metrics")
    assert response.status_code == 200
    assert "automation_trigger_evaluations_total" in response.text


def test_register_and_fetch_scenario(test_client):
    response = test_client.post(f"{API_PREFIX}/scenarios", json=ASK_SCENARIO)
    assert response.status_code == 201
    assert response.json()["data"] == {"scenario_id": "ASK"}

    fetched = test_client.get(f"{API_PREFIX}/scenarios/ASK").json()["data"]["scenario"]
    assert [s["next_step"] for s in fetched["steps"]] == ["m1", None]

    listed = test_client.get(f"{API_PREFIX}/scenarios", params={"company_id": "1"}).json()
    assert [s["id"] for s in listed["data"]["scenarios"]] == ["ASK"]


def test_invalid_scenario_is_rejected(test_client):
    broken = {**ASK_SCENARIO, "steps": [{"id": "a1", "type": "action", "action": "launch_rocket"}]}

    response = test_client.post(f"{API_PREFIX}/scenarios", json=broken)

    assert response.status_code == 422
    assert response.json()["detail"]["scenario_id"] == "ASK"


def test_unknown_scenario_returns_404(test_client):
    assert test_client.get(f"{API_PREFIX}/scenarios/NOPE").status_code == 404


def test_message_flow_round_trip(test_client):
    test_client.post(f"{API_PREFIX}/scenarios", json=ASK_SCENARIO)

    first = test_client.post(f"{API_PREFIX}/messages", json=_inbound("I want to register"))
    assert first.status_code == 200
    data = first.json()["data"]
    assert [m["content"] for m in data["outbound_messages"]] == ["What's your name?"]
    assert data["flow_status"] == "active"

    flow = test_client.get(f"{API_PREFIX}/flows/CONV1").json()["data"]["flow"]
    assert flow["current_step_id"] == "q1"

    second = test_client.post(f"{API_PREFIX}/messages", json=_inbound("Sara")).json()["data"]
    assert [m["content"] for m in second["outbound_messages"]] == ["Welcome Sara"]
    assert second["flow_status"] == "completed"
    assert test_client.get(f"{API_PREFIX}/flows/CONV1").status_code == 404


def test_message_without_match(test_client):
    response = test_client.post(f"{API_PREFIX}/messages", json=_inbound("hello"))

    assert response.status_code == 200
    assert response.json()["message"] == "No automation matched"
    assert response.json()["data"]["outbound_messages"] == []


def test_message_requires_conversation_id(test_client):
    response = test_client.post(f"{API_PREFIX}/messages", json=_inbound("hi", conversation_id=""))
    assert response.status_code == 422


def test_cancel_flow(test_client):
    test_client.post(f"{API_PREFIX}/scenarios", json=ASK_SCENARIO)
    test_client.post(f"{API_PREFIX}/messages", json=_inbound("register please"))

    response = test_client.post(f"{API_PREFIX}/flows/CONV1/cancel", json={"reason": "agent_takeover"})

    assert response.status_code == 200
    assert response.json()["data"]["flow"]["status"] == "abandoned"
    assert test_client.post(f"{API_PREFIX}/flows/CONV1/cancel").status_code == 404


def test_escalation_rule_check(test_client, escalation_sink):
    rule = {"id": "R1", "name": "Angry customers", "company_id": "1", "conditions": {"sentiment": "negative"}}
    assert test_client.post(f"{API_PREFIX}/escalation-rules", json=rule).status_code == 201

    snapshot = {"conversation_id": "CONV9", "customer_id": "CUST1", "company_id": "1",
                "messages": ["this is awful"], "sentiment": "negative"}
    response = test_client.post(f"{API_PREFIX}/escalations/check", json=snapshot)

    assert response.json()["data"] == {"escalated": True, "rule_id": "R1"}
    escalation_sink.handoff.assert_awaited_once()


def test_engine_not_ready_returns_503(test_client):
    from convoflow.main import app

    orchestrator = app.state.orchestrator
    del app.state.orchestrator
    try:
        response = test_client.post(f"{API_PREFIX}/messages", json=_inbound("hi"))
    finally:
        app.state.orchestrator = orchestrator
    assert response.status_code == 503


def test_list_escalation_rules_with_filters(test_client):
    rules = [
        {"id": "R1", "name": "Urgent", "company_id": "1", "priority": "urgent"},
        {"id": "R2", "name": "Paused", "company_id": "1", "priority": "urgent", "is_active": False},
        {"id": "R3", "name": "Other company", "company_id": "2"},
    ]
    for rule in rules:
        assert test_client.post(f"{API_PREFIX}/escalation-rules", json=rule).status_code == 201

    response = test_client.get(f"{API_PREFIX}/escalation-rules",
                               params={"company_id": "1", "priority": "urgent", "is_active": "true"})

    assert response.status_code == 200
    assert [r["id"] for r in response.json()["data"]["rules"]] == ["R1"]
    everything = test_client.get(f"{API_PREFIX}/escalation-rules").json()["data"]["rules"]
    assert [r["id"] for r in everything] == ["R1", "R2", "R3"]
