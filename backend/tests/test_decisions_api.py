"""
HTTP tests for the decisions and auth routers.

Runs the FastAPI app against the in-memory SQLite engine with fake
collaborators injected through dependency overrides.

Test Coverage:
1. Creation, fallback creation, validation errors
2. Credential handling: client key, master key, session token
3. Review, re-review guard, invalid action
4. Audit read and tenant isolation
5. Outcomes and links
"""
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from contextgrade.auth import hash_password, verify_password
from contextgrade.config import get_settings
from contextgrade.database import get_db
from contextgrade.main import app
from contextgrade.models.db_models import MembershipRole
from contextgrade.routers.decisions import get_context_gatherer, get_recommender


@pytest.fixture
def api(session_factory, settings, fake_gatherer, fake_recommender):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_context_gatherer] = lambda: fake_gatherer
    app.dependency_overrides[get_recommender] = lambda: fake_recommender
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def tenant(db_session, make_client, make_user, make_membership):
    client = make_client("Acme Sales", api_key="acme-key")
    other = make_client("Other Co", api_key="other-key")
    make_client("Dormant Co", active=False, api_key="dormant-key")
    user = make_user("reviewer@acme.io", password_hash=hash_password("correct-horse"))
    make_membership(user, client, role=MembershipRole.APPROVER)

    seeded = SimpleNamespace(client_id=client.id, other_client_id=other.id, user_id=user.id)
    # Release the shared connection before requests open their own sessions
    db_session.close()
    return seeded


ACME = {"X-API-Key": "acme-key"}
OTHER = {"X-API-Key": "other-key"}


def decision_payload(**overrides):
    payload = {
        "subject_entity": {"external_id": "crm-100", "name": "Globex", "domain": "globex.com"},
        "deal": {"external_deal_id": "D-1", "amount": "12000.00", "currency": "USD", "discount_requested": 15},
        "decision_type": "DISCOUNT",
    }
    payload.update(overrides)
    return payload


def create_decision(api, headers=ACME, **overrides):
    response = api.post("/decisions", json=decision_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# TEST: SERVICE ENDPOINTS
# =============================================================================

class TestServiceEndpoints:

    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, api):
        assert api.get("/").json()["name"] == "ContextGrade"


# =============================================================================
# TEST: CREATION
# =============================================================================

class TestCreateDecisionApi:

    def test_create(self, api, tenant):
        body = create_decision(api, context_key="q3-discounts", urgency="HIGH")

        assert body["status"] == "PROPOSED"
        assert body["client_id"] == tenant.client_id
        assert body["urgency"] == "HIGH"
        assert body["recommendation"] == {
            "recommendation": "approve_with_conditions",
            "confidence": "high",
            "rationale": ["Established website", "No negative sentiment"],
            "suggested_conditions": ["Net 30 payment terms"],
        }
        assert body["context"]["agent_model"] == "fake-model"
        assert body["subject_entity"]["external_id"] == "crm-100"
        assert body["deal_id"] is not None

    def test_recommender_outage_still_creates(self, api, tenant, fake_recommender):
        fake_recommender.error = RuntimeError("provider down")

        body = create_decision(api)

        assert body["status"] == "PROPOSED"
        assert body["recommendation"]["recommendation"] == "review_manually"
        assert body["recommendation"]["confidence"] == "low"

    def test_missing_credentials(self, api, tenant):
        response = api.post("/decisions", json=decision_payload())

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_unknown_api_key(self, api, tenant):
        response = api.post("/decisions", json=decision_payload(), headers={"X-API-Key": "nope"})

        assert response.status_code == 401

    def test_non_ascii_api_key(self, api, tenant):
        response = api.post("/decisions", json=decision_payload(), headers={"X-API-Key": b"caf\xe9"})

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_inactive_client(self, api, tenant):
        response = api.post("/decisions", json=decision_payload(), headers={"X-API-Key": "dormant-key"})

        assert response.status_code == 403
        assert response.json()["error"] == "InactiveClient"

    def test_master_key_requires_client_id(self, api, tenant, settings):
        response = api.post("/decisions", json=decision_payload(), headers={"X-API-Key": settings.master_api_key})

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_master_key_with_client_id(self, api, tenant, settings):
        body = create_decision(
            api, headers={"X-API-Key": settings.master_api_key}, client_id=tenant.other_client_id,
        )

        assert body["client_id"] == tenant.other_client_id

    @pytest.mark.parametrize("overrides", [
        {"subject_entity": {"external_id": "crm-1"}},
        {"subject_entity": {"external_id": "", "name": "Globex"}},
        {"decision_type": "LOTTERY"},
        {"deal": {"amount": -5}},
    ])
    def test_invalid_payload(self, api, tenant, overrides):
        response = api.post("/decisions", json=decision_payload(**overrides), headers=ACME)

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"


# =============================================================================
# TEST: REVIEW
# =============================================================================

class TestReviewApi:

    def test_approve(self, api, tenant):
        decision = create_decision(api)

        response = api.post(f"/decisions/{decision['id']}/review", json={"action": "approve"}, headers=ACME)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "APPROVED"
        assert body["final_action"] == "approve_with_conditions"
        assert body["decided_by"] == "system"
        assert body["decided_at"] is not None

    def test_override_with_note(self, api, tenant):
        decision = create_decision(api)

        body = api.post(
            f"/decisions/{decision['id']}/review",
            json={"action": "override", "note": "Board approved", "final_action": "approve at 10%"},
            headers=ACME,
        ).json()

        assert body["status"] == "OVERRIDDEN"
        assert body["final_action"] == "approve at 10%"
        assert len(body["overrides"]) == 1
        assert body["overrides"][0]["override_reason"] == "Board approved"
        assert body["overrides"][0]["user_id"] == "system"

    def test_second_review_conflicts(self, api, tenant):
        decision = create_decision(api)
        api.post(f"/decisions/{decision['id']}/review", json={"action": "reject"}, headers=ACME)

        response = api.post(f"/decisions/{decision['id']}/review", json={"action": "approve"}, headers=ACME)

        assert response.status_code == 409
        assert response.json()["error"] == "ConflictError"

    def test_invalid_action(self, api, tenant):
        decision = create_decision(api)

        response = api.post(f"/decisions/{decision['id']}/review", json={"action": "shrug"}, headers=ACME)

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidAction"

    def test_review_other_clients_decision(self, api, tenant):
        decision = create_decision(api)

        response = api.post(f"/decisions/{decision['id']}/review", json={"action": "approve"}, headers=OTHER)

        assert response.status_code == 404
        assert api.get(f"/decisions/{decision['id']}", headers=ACME).json()["status"] == "PROPOSED"


# =============================================================================
# TEST: AUDIT READ
# =============================================================================

class TestGetDecisionApi:

    def test_recommendation_rebuilt_from_snapshot(self, api, tenant):
        decision = create_decision(api)

        body = api.get(f"/decisions/{decision['id']}", headers=ACME).json()

        assert body["recommendation"]["rationale"] == ["Established website", "No negative sentiment"]
        assert body["recommendation"]["confidence"] == "high"
        assert body["context"]["signals"]["website"]["exists"] is True

    def test_other_client_gets_not_found(self, api, tenant):
        decision = create_decision(api)

        response = api.get(f"/decisions/{decision['id']}", headers=OTHER)

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_unknown_decision(self, api, tenant):
        response = api.get("/decisions/does-not-exist", headers=ACME)

        assert response.status_code == 404

    def test_master_key_read(self, api, tenant, settings):
        decision = create_decision(api)

        response = api.get(
            f"/decisions/{decision['id']}",
            params={"client_id": tenant.client_id},
            headers={"X-API-Key": settings.master_api_key},
        )

        assert response.status_code == 200


# =============================================================================
# TEST: OUTCOMES AND LINKS
# =============================================================================

class TestOutcomesAndLinksApi:

    def test_record_outcome(self, api, tenant):
        decision = create_decision(api)

        response = api.post(
            f"/decisions/{decision['id']}/outcomes",
            json={"outcome_type": "PAID_LATE", "notes": "12 days late"},
            headers=ACME,
        )

        assert response.status_code == 201
        assert response.json()["outcome_type"] == "PAID_LATE"
        outcomes = api.get(f"/decisions/{decision['id']}", headers=ACME).json()["outcomes"]
        assert [o["notes"] for o in outcomes] == ["12 days late"]

    def test_link_is_idempotent(self, api, tenant):
        first = create_decision(api)
        second = create_decision(api, subject_entity={"external_id": "crm-200", "name": "Initech"})
        body = {"to_decision_id": first["id"], "relationship_type": "PRECEDENT", "confidence": 0.9}

        created = api.post(f"/decisions/{second['id']}/links", json=body, headers=ACME)
        repeated = api.post(f"/decisions/{second['id']}/links", json=body, headers=ACME)

        assert created.status_code == 201
        assert created.json()["created"] is True
        assert created.json()["link"]["confidence"] == 0.9
        assert repeated.status_code == 200
        assert repeated.json() == {"created": False, "link": None}

    def test_invalid_relationship_type(self, api, tenant):
        decision = create_decision(api)

        response = api.post(
            f"/decisions/{decision['id']}/links",
            json={"to_decision_id": decision["id"], "relationship_type": "COUSIN"},
            headers=ACME,
        )

        assert response.status_code == 400


# =============================================================================
# TEST: SESSION USERS
# =============================================================================

class TestSessionApi:

    def test_password_hash_round_trip(self):
        hashed = hash_password("correct-horse")

        assert verify_password("correct-horse", hashed)
        assert not verify_password("wrong", hashed)
        assert not verify_password("correct-horse", "")

    def login(self, api, password="correct-horse"):
        return api.post("/auth/login", json={"email": "reviewer@acme.io", "password": password})

    def test_wrong_password(self, api, tenant):
        assert self.login(api, password="wrong").status_code == 401

    def test_me_lists_memberships(self, api, tenant):
        token = self.login(api).json()["access_token"]

        body = api.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()

        assert body["id"] == tenant.user_id
        assert body["memberships"][0]["client_id"] == tenant.client_id
        assert body["memberships"][0]["role"] == "APPROVER"

    def test_session_review_records_user(self, api, tenant):
        token = self.login(api).json()["access_token"]
        session = {"Authorization": f"Bearer {token}"}
        decision = create_decision(api, headers=session)

        body = api.post(f"/decisions/{decision['id']}/review", json={"action": "escalate"}, headers=session).json()

        assert decision["client_id"] == tenant.client_id
        assert body["status"] == "ESCALATED"
        assert body["decided_by"] == tenant.user_id
        assert body["decider"]["email"] == "reviewer@acme.io"

    def test_session_header_for_foreign_client(self, api, tenant):
        token = self.login(api).json()["access_token"]

        response = api.post(
            "/decisions",
            json=decision_payload(),
            headers={"Authorization": f"Bearer {token}", "X-Client-Id": tenant.other_client_id},
        )

        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"
