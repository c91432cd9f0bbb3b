"""
Tests for claims and risk API routes.
"""

from typing import Optional

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from starlette.websockets import WebSocketDisconnect

from revcycle.api.config import settings
from revcycle.api.deps import get_engine
from revcycle.api.main import app
from revcycle.core.enums import Role
from revcycle.utils.auth import create_access_token
from revcycle.utils.errors import UpstreamTimeoutError

client = TestClient(app)


def auth(role: Role, patient_id: Optional[str] = None, user_id: str = "user-1") -> dict[str, str]:
    token = create_access_token(user_id, role, patient_id=patient_id)
    return {"Authorization": f"Bearer {token}"}


BILLING = auth(Role.BILLING, user_id="billing-1")
PAYER = auth(Role.INSURANCE, user_id="payer-1")
ANALYST = auth(Role.AI_ANALYST, user_id="analyst-1")
DOCTOR = auth(Role.DOCTOR, user_id="doctor-1")


@pytest.fixture(autouse=True)
def override_engine(engine):
    """Serve every request from a fresh engine."""
    app.dependency_overrides[get_engine] = lambda: engine
    yield engine
    app.dependency_overrides.clear()


def submit(amount="1000", patient_id="patient-1", **extra):
    body = {"patient_id": patient_id, "payer_name": "Acme Health", "amount": amount, **extra}
    return client.post("/api/claims", json=body, headers=BILLING)


class TestAuth:
    """Tests for token and capability checks."""

    def test_missing_token(self):
        response = client.get("/api/claims")
        assert response.status_code in (401, 403)

    def test_garbage_token(self):
        response = client.get("/api/claims", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_patient_token_requires_patient_id(self):
        response = client.get("/api/claims", headers=auth(Role.PATIENT))
        assert response.status_code == 401

    def test_wrong_role_is_forbidden(self):
        response = client.post(
            "/api/claims",
            json={"patient_id": "patient-1", "payer_name": "Acme Health", "amount": "10"},
            headers=DOCTOR,
        )
        assert response.status_code == 403


class TestSubmitClaim:
    def test_submit(self, scorer):
        scorer.script = [72.0]
        response = submit(appointment_id="appt-1")

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "PENDING"
        assert data["amount"] == "1000.00"
        assert data["risk_score"] == 72.0
        assert data["risk_tier"] == "high"
        assert data["submitted_by"] == "billing-1"

    def test_non_positive_amount(self):
        response = submit(amount="0")

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_duplicate_appointment(self):
        submit(appointment_id="appt-1")
        response = submit(appointment_id="appt-1")

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "duplicate_appointment"
        assert body["context"]["appointment_id"] == "appt-1"

    def test_malformed_body(self):
        response = client.post("/api/claims", json={"payer_name": "Acme"}, headers=BILLING)
        assert response.status_code == 422


class TestListAndGet:
    def test_list_filters_by_status(self):
        submit()
        second = submit().json()
        client.post(
            "/api/claims/manage",
            json={"claim_id": second["id"], "action": "approve"},
            headers=PAYER,
        )

        response = client.get("/api/claims", params={"status": "APPROVED"}, headers=BILLING)

        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == [second["id"]]

    def test_patient_sees_only_own_claims(self):
        mine = submit(patient_id="patient-1").json()
        submit(patient_id="patient-2")
        headers = auth(Role.PATIENT, patient_id="patient-1")

        response = client.get("/api/claims", headers=headers)

        assert [c["id"] for c in response.json()] == [mine["id"]]

    def test_patient_cannot_query_other_patient(self):
        headers = auth(Role.PATIENT, patient_id="patient-1")
        response = client.get("/api/claims", params={"patient_id": "patient-2"}, headers=headers)
        assert response.status_code == 403

    def test_get_claim(self):
        claim = submit().json()

        response = client.get(f"/api/claims/{claim['id']}", headers=BILLING)
        assert response.status_code == 200
        assert response.json()["claim_number"] == claim["claim_number"]

        other = auth(Role.PATIENT, patient_id="patient-9")
        assert client.get(f"/api/claims/{claim['id']}", headers=other).status_code == 403

    def test_get_unknown_claim(self):
        response = client.get("/api/claims/missing", headers=BILLING)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestDecision:
    def test_approve_then_redecide(self):
        claim = submit().json()

        approved = client.post(
            "/api/claims/manage",
            json={"claim_id": claim["id"], "action": "approve"},
            headers=PAYER,
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "APPROVED"
        assert approved.json()["processed_by"] == "payer-1"

        again = client.post(
            "/api/claims/manage",
            json={"claim_id": claim["id"], "action": "reject"},
            headers=PAYER,
        )
        assert again.status_code == 409
        assert again.json()["error"] == "invalid_state"
        assert again.json()["detail"] == "Claim not in a decidable state"

    def test_billing_cannot_decide(self):
        claim = submit().json()
        response = client.post(
            "/api/claims/manage",
            json={"claim_id": claim["id"], "action": "approve"},
            headers=BILLING,
        )
        assert response.status_code == 403

    def test_unknown_action(self):
        claim = submit().json()
        response = client.post(
            "/api/claims/manage",
            json={"claim_id": claim["id"], "action": "maybe"},
            headers=PAYER,
        )
        assert response.status_code == 422

    def test_resubmit_denied_claim(self):
        claim = submit().json()
        client.post(
            "/api/claims/manage",
            json={"claim_id": claim["id"], "action": "reject"},
            headers=PAYER,
        )

        response = client.post(
            f"/api/claims/{claim['id']}/resubmit",
            json={"attributes": {"documentation_complete": True}},
            headers=BILLING,
        )

        assert response.status_code == 201
        assert response.json()["status"] == "RESUBMITTED"
        assert response.json()["resubmitted_from"] == claim["id"]


class TestRisk:
    def test_rescore(self, scorer):
        claim = submit().json()
        scorer.script = [33.0]

        response = client.post(
            "/api/claims/rescore", json={"claim_ids": [claim["id"]]}, headers=ANALYST
        )

        assert response.status_code == 200
        assert response.json()["updated"] == [claim["id"]]
        assert response.json()["claims"][0]["risk_score"] == 33.0

    def test_rescore_unknown_id(self):
        response = client.post(
            "/api/claims/rescore", json={"claim_ids": ["missing"]}, headers=ANALYST
        )
        assert response.status_code == 404

    def test_predict(self, scorer):
        scorer.script = [58.0]
        response = client.post(
            "/api/claims/predict",
            json={"amount": "1200", "attributes": {"documentation_complete": False}},
            headers=ANALYST,
        )

        assert response.status_code == 200
        assert response.json()["score"] == 58.0
        assert response.json()["factors"][0]["name"] == "prior_denials"

    def test_predict_timeout_is_504(self, scorer):
        scorer.script = [UpstreamTimeoutError("Risk scoring timed out")]
        response = client.post("/api/claims/predict", json={}, headers=ANALYST)

        assert response.status_code == 504
        assert response.json()["error"] == "upstream_timeout"

    def test_current_scores(self, scorer):
        scorer.script = [25.0, 80.0]
        mine = submit(patient_id="patient-1").json()
        theirs = submit(patient_id="patient-2").json()

        response = client.get(
            "/api/risk/scores",
            params={"ids": f"{mine['id']},{theirs['id']},missing"},
            headers=BILLING,
        )
        assert response.status_code == 200
        scores = {s["entity_id"]: s["score"] for s in response.json()}
        assert scores == {mine["id"]: 25.0, theirs["id"]: 80.0}

        patient = auth(Role.PATIENT, patient_id="patient-1")
        response = client.get(
            "/api/risk/scores",
            params={"ids": f"{mine['id']},{theirs['id']}"},
            headers=patient,
        )
        assert [s["entity_id"] for s in response.json()] == [mine["id"]]

    def test_risk_stream_ping(self):
        token = create_access_token("analyst-1", Role.AI_ANALYST)

        with client.websocket_connect(f"/api/risk/stream?token={token}") as ws:
            assert ws.receive_json()["type"] == "connected"
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_risk_stream_rejects_doctor(self):
        token = create_access_token("doctor-1", Role.DOCTOR)

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/api/risk/stream?token={token}") as ws:
                ws.receive_json()

    def test_risk_stream_rejects_refresh_token(self):
        token = jwt.encode(
            {"sub": "analyst-1", "role": Role.AI_ANALYST.value, "type": "refresh"},
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/api/risk/stream?token={token}") as ws:
                ws.receive_json()

    def test_risk_stream_rejects_patient_token_without_patient(self):
        token = create_access_token("patient-user-1", Role.PATIENT)

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/api/risk/stream?token={token}") as ws:
                ws.receive_json()

    def test_risk_stream_accepts_patient(self):
        token = create_access_token("patient-user-1", Role.PATIENT, patient_id="patient-1")

        with client.websocket_connect(f"/api/risk/stream?token={token}") as ws:
            assert ws.receive_json()["type"] == "connected"


class TestHealth:
    def test_health(self):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["payment_gateway"] == "demo"
        assert body["checks"]["risk_sync"] == "stopped"

    def test_root(self):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["environment"] == "testing"
