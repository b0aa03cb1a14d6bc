"""Tests for the HTTP API."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from universal_config.engine import RuleEngine, set_rule_engine
from universal_config.errors import OperationCancelled, StorageUnavailable
from universal_config.main import create_app
from universal_config.storage import InMemoryRuleStore

ORG = "org-salon-1"


class FailingStore(InMemoryRuleStore):
    """Store whose reads fail with a configurable error."""

    def __init__(self, error: Exception):
        super().__init__()
        self.error = error

    def get_active_rules(self, organization_id, family, token=None):
        raise self.error


# =============================================================================
# Test Client Setup
# =============================================================================


@pytest.fixture
def client(engine: RuleEngine):
    """Test client bound to the in-memory engine fixture."""
    set_rule_engine(engine)
    yield TestClient(create_app())
    set_rule_engine(None)


@pytest.fixture
def failing_client(families, settings):
    def _client(error: Exception) -> TestClient:
        set_rule_engine(RuleEngine(store=FailingStore(error), families=families, settings=settings))
        return TestClient(create_app())

    yield _client
    set_rule_engine(None)


def _peak_rule(**fields):
    body = {
        "organization_id": ORG,
        "family": "booking",
        "status": "active",
        "priority": 20,
        "conditions": {"days_of_week": ["tuesday"], "time_ranges": [{"start": "17:00", "end": "20:00"}]},
        "payload": {"action_type": "require_deposit", "deposit_percentage": 20, "cancellation_hours": 48},
    }
    body.update(fields)
    return body


# =============================================================================
# Service Endpoints
# =============================================================================


class TestServiceEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_root(self, client):
        data = client.get("/").json()
        assert "evaluate" in data["endpoints"]

    def test_families(self, client):
        data = client.get("/families").json()
        assert data["total"] == 3
        booking = next(f for f in data["families"] if f["name"] == "booking")
        assert booking["strategy"] == "restrictive"
        assert booking["required_context"] == ["appointment_time"]
        assert booking["default_payload"]["action_type"] == "allow"


# =============================================================================
# Rules
# =============================================================================


class TestRulesApi:
    def test_create_rule(self, client):
        response = client.post("/rules", json=_peak_rule(id="peak"))

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "peak"
        assert data["version"] == 1
        assert data["status"] == "active"

    def test_invalid_rule_returns_errors(self, client):
        response = client.post("/rules", json=_peak_rule(payload={"deposit_percentage": 101}))

        assert response.status_code == 422
        fields = [e["field"] for e in response.json()["detail"]]
        assert fields == ["payload.deposit_percentage"]

    def test_unknown_family(self, client):
        response = client.post("/rules", json=_peak_rule(family="inventory"))

        assert response.status_code == 404
        assert response.json()["error"] == "unknown_family"

    def test_list_active_rules(self, client):
        client.post("/rules", json=_peak_rule(id="peak"))
        client.post("/rules", json=_peak_rule(id="draft", status="draft"))

        data = client.get(f"/rules/{ORG}/booking").json()

        assert data["total"] == 1
        assert data["rules"][0]["id"] == "peak"

    def test_history(self, client):
        client.post("/rules", json=_peak_rule(id="peak"))
        client.post("/rules", json=_peak_rule(id="peak", payload={"deposit_percentage": 30}))

        data = client.get(f"/rules/{ORG}/id/peak/history").json()

        assert [v["version"] for v in data["versions"]] == [1, 2]
        assert [e["event_type"] for e in data["events"]] == ["rule_created", "rule_versioned"]

    def test_status_change(self, client):
        client.post("/rules", json=_peak_rule(id="peak", status="draft"))

        response = client.post(f"/rules/{ORG}/id/peak/status", json={"status": "active"})
        assert response.status_code == 200
        assert response.json()["status"] == "active"

        response = client.post(f"/rules/{ORG}/id/peak/status", json={"status": "draft"})
        assert response.status_code == 422

    def test_archive_twice(self, client):
        client.post("/rules", json=_peak_rule(id="peak"))

        first = client.post(f"/rules/{ORG}/id/peak/archive")
        second = client.post(f"/rules/{ORG}/id/peak/archive")

        assert first.status_code == second.status_code == 200
        assert second.json()["status"] == "archived"

    def test_archive_missing_rule(self, client):
        response = client.post(f"/rules/{ORG}/id/missing/archive")
        assert response.status_code == 404
        assert response.json()["error"] == "rule_not_found"

    def test_simulate_draft(self, client):
        response = client.post("/rules/simulate", json={
            "rule": _peak_rule(status="draft"),
            "scenarios": [
                {"scenario_id": "peak", "context": {"appointment_time": "18:00 Tuesday"},
                 "expected": {"deposit_percentage": 20}},
                {"scenario_id": "late", "context": {"appointment_time": "18:00 Tuesday"},
                 "expected": {"cancellation_hours": 72}},
            ],
        })

        assert response.status_code == 200
        data = response.json()
        assert (data["passed"], data["failed"]) == (1, 1)
        assert data["coverage"] == 50.0
        assert data["results"][1]["diff"] == {"cancellation_hours": {"expected": 72, "actual": 48}}
        assert client.get(f"/rules/{ORG}/booking").json()["total"] == 0

    def test_simulate_stored_rule(self, client):
        client.post("/rules", json=_peak_rule(id="peak"))

        data = client.post("/rules/simulate", json={
            "rule_id": "peak",
            "organization_id": ORG,
            "scenarios": [{"scenario_id": "sunday", "context": {"appointment_time": "03:00 Sunday"},
                           "expect_match": False}],
        }).json()

        assert data["rule"]["id"] == "peak"
        assert data["results"][0]["matched"] is False
        assert data["passed"] == 1

    def test_simulate_invalid_draft(self, client):
        response = client.post("/rules/simulate", json={
            "rule": _peak_rule(payload={"deposit_percentage": 101}),
            "scenarios": [{"scenario_id": "peak", "context": {"appointment_time": "18:00 Tuesday"}}],
        })
        assert response.status_code == 422
        assert [e["field"] for e in response.json()["detail"]] == ["payload.deposit_percentage"]

    def test_simulate_needs_a_rule(self, client):
        response = client.post("/rules/simulate", json={
            "scenarios": [{"scenario_id": "peak", "context": {}}],
        })
        assert response.status_code == 422


# =============================================================================
# Evaluation
# =============================================================================


class TestEvaluateApi:
    def test_evaluate_peak_hour(self, client):
        client.post("/rules", json=_peak_rule(id="peak"))

        response = client.post("/evaluate", json={
            "organization_id": ORG,
            "family": "booking",
            "context": {"appointment_time": "18:00 Tuesday"},
        })

        assert response.status_code == 200
        data = response.json()
        assert data["is_default"] is False
        assert data["payload"]["deposit_percentage"] == 20
        assert data["payload"]["cancellation_hours"] == 48
        assert data["trace"] == []

    def test_evaluate_with_trace(self, client):
        client.post("/rules", json=_peak_rule(id="peak"))

        data = client.post("/evaluate", json={
            "organization_id": ORG,
            "family": "booking",
            "context": {"appointment_time": "03:00 Sunday"},
            "include_trace": True,
        }).json()

        assert data["is_default"] is True
        assert data["trace"][0]["rule_id"] == "peak"
        assert data["trace"][0]["matched"] is False

    def test_missing_context(self, client):
        response = client.post("/evaluate", json={
            "organization_id": ORG, "family": "booking", "context": {},
        })
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_context"

    def test_unreadable_time(self, client):
        response = client.post("/evaluate", json={
            "organization_id": ORG, "family": "booking", "context": {"appointment_time": "next week sometime"},
        })
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_context"

    def test_ambiguous_override(self, client):
        for rule_id in ("a", "b"):
            client.post("/rules", json={
                "id": rule_id,
                "organization_id": ORG,
                "family": "approval",
                "status": "active",
                "priority": 5,
                "payload": {"required_approvals": 1 if rule_id == "a" else 2},
            })

        response = client.post("/evaluate", json={
            "organization_id": ORG, "family": "approval", "context": {"amount": 10},
        })

        assert response.status_code == 409
        assert response.json()["error"] == "ambiguous_override"

    def test_storage_unavailable(self, failing_client):
        client = failing_client(StorageUnavailable("database is down"))
        response = client.post("/evaluate", json={
            "organization_id": ORG, "family": "booking", "context": {"appointment_time": "10:00"},
        })
        assert response.status_code == 503

    def test_cancelled(self, failing_client):
        client = failing_client(OperationCancelled("evaluate timed out"))
        response = client.post("/evaluate", json={
            "organization_id": ORG, "family": "booking", "context": {"appointment_time": "10:00"},
        })
        assert response.status_code == 504
        assert response.json()["error"] == "operation_cancelled"


# =============================================================================
# Templates
# =============================================================================


class TestTemplatesApi:
    def test_list_templates(self, client):
        data = client.get("/templates/booking").json()
        assert data["total"] == 4
        assert "peakHours" in [t["name"] for t in data["templates"]]

    def test_instantiate(self, client):
        response = client.post(
            "/templates/booking/loyaltyPlatinum/instantiate", json={"organization_id": ORG}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "draft"
        assert data["organization_id"] == ORG
        assert client.get(f"/rules/{ORG}/id/{data['id']}").status_code == 404

    def test_instantiate_and_save(self, client):
        data = client.post(
            "/templates/booking/peakHours/instantiate",
            json={"organization_id": ORG, "save": True},
        ).json()

        assert client.get(f"/rules/{ORG}/id/{data['id']}").json()["status"] == "draft"

    def test_unknown_template(self, client):
        response = client.post(
            "/templates/booking/weekendSpecial/instantiate", json={"organization_id": ORG}
        )
        assert response.status_code == 404
        assert response.json()["error"] == "template_not_found"
