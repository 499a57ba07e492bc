# tests/test_api.py
def test_root(client):
    resp = client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["rules_loaded"] == 4
    assert data["crew_loaded"] == 7


def test_get_rules(client):
    resp = client.get("/rules")
    assert resp.status_code == 200
    data = resp.json()
    assert [r["id"] for r in data["rules"]] == sorted(r["id"] for r in data["rules"])
    assert data["limits"]["max_flight_duty_period_hours"] == 13
    assert data["ranking"]["warning_penalty"] == 5
    assert data["invalid"] == []


def test_rule_detail_and_missing_rule(client):
    resp = client.get("/rules/PART117_DUTY_LIMITS")
    assert resp.status_code == 200
    assert resp.json()["logic"]["type"] == "duty_limits"

    resp = client.get("/rules/NOPE")
    assert resp.status_code == 404
    assert resp.json()["error"] is True


def test_reload_rules(client):
    resp = client.post("/rules/reload")
    assert resp.status_code == 200
    assert resp.json()["loaded"] == 4


def test_check_scenario_a(client):
    payload = {
        "crew_id": "10002",
        "proposed_duty": {
            "start": "2024-12-02T13:00:00Z",
            "end": "2024-12-02T18:30:00Z",
            "segments": [{
                "flight_number": "AA300", "origin": "ORD", "destination": "LGA",
                "departure": "2024-12-02T14:00:00Z", "arrival": "2024-12-02T18:00:00Z",
            }],
        },
    }
    resp = client.post("/check", json=payload)
    assert resp.status_code == 200
    data = resp.json()
    assert data["is_legal"] is True
    assert data["verdict"]["violations"] == []
    assert data["verdict"]["checks_performed"] == ["regulatory-duty-limits", "fatigue-risk"]
    assert data["proposed_duty_hours"] == 5.5
    assert data["proposed_flight_hours"] == 4.0
    assert data["crew_current_state"]["state"] == "RESERVE"


def test_check_reports_violation(client):
    payload = {
        "crew_id": "10002",
        "proposed_duty": {"start": "2024-12-01T21:00:00Z", "end": "2024-12-01T23:00:00Z"},
        "check_categories": ["part117"],
    }
    data = client.post("/check", json=payload).json()
    assert data["is_legal"] is False
    assert data["verdict"]["violations"][0]["rule"] == "117.25(b)"
    assert data["verdict"]["fatigue"] is None


def test_check_unknown_crew(client):
    payload = {"crew_id": "99999", "proposed_duty": {"start": "2024-12-02T13:00:00Z", "end": "2024-12-02T18:00:00Z"}}
    resp = client.post("/check", json=payload)
    assert resp.status_code == 404
    assert resp.json() == {"error": True, "message": "Crew member 99999 not found"}


def test_check_rejects_inverted_period(client):
    payload = {"crew_id": "10002", "proposed_duty": {"start": "2024-12-02T18:00:00Z", "end": "2024-12-02T13:00:00Z"}}
    resp = client.post("/check", json=payload)
    assert resp.status_code == 422
    data = resp.json()
    assert data["error"] is True
    assert "proposed_duty" in data["message"]


def test_replacements(client):
    payload = {
        "flight_number": "AA2201", "position": "FO", "departure": "2024-12-02T10:00:00Z",
        "base": "ORD", "aircraft_type": "B738",
    }
    resp = client.post("/replacements", json=payload)
    assert resp.status_code == 200
    data = resp.json()
    assert [c["crew_id"] for c in data["candidates"]] == ["10002", "10006"]
    assert data["candidates"][0]["score_breakdown"][0] == {"name": "base", "points": 100.0}
    assert data["metadata"]["legal_count"] == 2


def test_replacements_rejects_unknown_strategy(client):
    payload = {
        "flight_number": "AA2201", "position": "FO", "departure": "2024-12-02T10:00:00Z",
        "base": "ORD", "aircraft_type": "B738", "strategy": "random",
    }
    resp = client.post("/replacements", json=payload)
    assert resp.status_code == 422
    assert resp.json()["error"] is True


def test_swap_then_status(client):
    payload = {
        "flight_number": "AA1234", "position": "FO", "original_crew_id": "10001",
        "replacement_crew_id": "10002", "reason": "sick call", "effective_time": "2024-12-01T15:00:00Z",
    }
    # 10001 is a captain, 10002 a first officer: position mismatch on the replacement
    resp = client.post("/swap", json=payload)
    assert resp.status_code == 422

    payload["position"] = "CA"
    payload["replacement_crew_id"] = "10003"
    resp = client.post("/swap", json=payload)
    assert resp.status_code == 409
    assert "RESERVE" in resp.json()["message"]


def test_swap_dry_run(client):
    payload = {
        "flight_number": "AA9", "position": "FO", "original_crew_id": "10002",
        "replacement_crew_id": "10005", "reason": "timeout", "effective_time": "2024-12-01T15:00:00Z",
        "dry_run": True,
    }
    # original is a reserve, not on duty
    resp = client.post("/swap", json=payload)
    assert resp.status_code == 409


def test_crew_status(client):
    resp = client.get("/crew/10001", params={"at": "2024-12-01T17:00:00Z"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["current_state"]["hours_remaining"] == 1.0
    assert "APPROACHING_TIMEOUT" in data["flags"]
    assert data["availability"]["next_available"].startswith("2024-12-01T18:00:00")

    assert client.get("/crew/00000").status_code == 404
    assert client.get("/crew/10001", params={"at": "yesterday"}).status_code == 422


def test_crew_list_and_reserve_pool(client):
    data = client.get("/crew", params={"state": "RESERVE", "location": "ORD"}).json()
    assert [c["crew_id"] for c in data["crew"]] == ["10002", "10004", "10005", "10007"]
    assert client.get("/crew").status_code == 422

    pool = client.get("/reserve-pool", params={"base": "ORD", "position": "FO", "at": "2024-12-01T17:00:00Z"}).json()
    assert pool["available_crew_ids"] == ["10002", "10005", "10007"]
    assert pool["count"] == 3


def test_unexpected_fault_uses_error_envelope():
    from fastapi.testclient import TestClient
    from backend.load_rules import RuleLimits
    from backend.main import app

    with TestClient(app, raise_server_exceptions=False) as c:
        # a limit table that bypassed validation: the evaluator cannot resolve its zone
        broken = RuleLimits.model_construct(wocl_timezone="Mars/Olympus")
        c.app.state.ruleset = c.app.state.ruleset.model_copy(update={"limits": broken})
        resp = c.post("/check", json={
            "crew_id": "10002",
            "proposed_duty": {"start": "2024-12-02T13:00:00Z", "end": "2024-12-02T18:30:00Z"},
        })
    assert resp.status_code == 500
    assert resp.headers["content-type"].startswith("application/json")
    data = resp.json()
    assert data["error"] is True
    assert data["message"].startswith("Internal error")
