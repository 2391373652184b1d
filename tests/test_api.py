"""HTTP tests for the FastAPI surface."""

import hashlib
import hmac
import json
from datetime import timedelta

import pytest

from src.formflow_analytics.api.endpoints.tracking import VISITOR_COOKIE, read_visitor_cookie
from src.formflow_analytics.config import settings
from src.formflow_analytics.timeutil import utcnow
from tests.factories import make_handoff

WEBHOOK_SECRET = "whsec-api-test"


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "COMPLETION_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return WEBHOOK_SECRET


def signed(payload: dict, secret: str) -> tuple:
    body = json.dumps(payload).encode("utf-8")
    return body, hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["database"] == "connected"


class TestTrackingApi:
    """Tests for the touch beacon."""

    def test_touch_sets_signed_cookie(self, client):
        response = client.post("/t/touch", json={
            "touch_type": "page_view",
            "page_url": "https://bank.example.org/rates?utm_source=google&utm_medium=cpc",
        })

        assert response.status_code == 200
        visitor_id = response.json()["visitor_id"]
        assert read_visitor_cookie(response.cookies[VISITOR_COOKIE]) == visitor_id

    def test_cookie_identifies_returning_visitor(self, client):
        first = client.post("/t/touch", json={"touch_type": "page_view"})
        second = client.post("/t/touch", json={"touch_type": "form_view", "instance_id": 1})

        assert second.json()["visitor_id"] == first.json()["visitor_id"]

    def test_unknown_touch_type(self, client):
        response = client.post("/t/touch", json={"touch_type": "mouse_wiggle"})

        assert response.status_code == 400


class TestHandoffApi:
    """Tests for the handoff lifecycle over HTTP."""

    def test_issue_and_redirect(self, client):
        issued = client.post("/handoffs", json={
            "instance_id": 1,
            "destination_url": "https://enroll.example.org/apply",
        }).json()

        response = client.get(f"/handoff/{issued['token']}", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "https://enroll.example.org/apply"

    def test_redirect_unknown_token(self, client):
        response = client.get(f"/handoff/{'0' * 32}", follow_redirects=False)

        assert response.status_code == 404

    def test_complete_twice_conflicts(self, client, db):
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))
        url = f"/handoffs/{handoff.handoff_token}/complete"

        first = client.post(url, json={"account_number": "ACC-1"})
        second = client.post(url, json={"account_number": "ACC-2"})

        assert first.status_code == 200
        assert first.json()["status"] == "completed"
        assert second.status_code == 409

    def test_complete_unknown_token(self, client):
        response = client.post(f"/handoffs/{'0' * 32}/complete", json={"account_number": "ACC-1"})

        assert response.status_code == 404

    def test_stats(self, client, db):
        make_handoff(db, utcnow() - timedelta(minutes=10))
        today = utcnow().date().isoformat()

        response = client.get("/api/handoffs/stats", params={"instance_id": 1, "date_from": today, "date_to": today})

        assert response.status_code == 200
        assert response.json()["total"] == 1


class TestCompletionWebhookApi:
    """Tests for signed completion intake."""

    def test_bad_signature_rejected(self, client, webhook_secret):
        body, _ = signed({"account_number": "ACC-1", "instance_id": 1}, webhook_secret)

        response = client.post("/webhooks/completions", content=body, headers={"x-formflow-signature": "0" * 64})

        assert response.status_code == 401

    def test_signed_completion_matches_handoff(self, client, db, webhook_secret):
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))
        body, signature = signed({"account_number": "ACC-1", "handoff_token": handoff.handoff_token}, webhook_secret)

        response = client.post("/webhooks/completions", content=body, headers={"x-formflow-signature": signature})

        assert response.status_code == 200
        assert response.json()["accepted"] is True
        assert response.json()["matched_handoff"] is True

    def test_invalid_payload(self, client, webhook_secret):
        body, signature = signed({"instance_id": 1}, webhook_secret)

        response = client.post("/webhooks/completions", content=body, headers={"x-formflow-signature": signature})

        assert response.status_code == 422


class TestImportApi:
    """Tests for the preview then run workflow."""

    def test_preview_then_dry_run(self, client, db):
        make_handoff(db, utcnow() - timedelta(hours=1), token="a" * 32)
        csv_bytes = f"Account Number,Handoff Token\nACC-1,{'a' * 32}\nACC-2,\n".encode("utf-8")

        preview = client.post("/import/preview", files={"file": ("completions.csv", csv_bytes, "text/csv")})

        assert preview.status_code == 200
        assert preview.json()["total_rows"] == 2
        session_id = preview.json()["session_id"]

        run = client.post("/import/run", json={"session_id": session_id, "instance_id": 1})

        assert run.status_code == 200
        assert run.json()["dry_run"] is True
        assert run.json()["matched"] == 1
        assert run.json()["unmatched"] == 1

    def test_preview_rejects_non_csv(self, client):
        response = client.post("/import/preview", files={"file": ("notes.txt", b"hello", "text/plain")})

        assert response.status_code == 400

    def test_run_unknown_session(self, client):
        response = client.post("/import/run", json={"session_id": "missing", "instance_id": 1})

        assert response.status_code == 404


class TestReportsApi:
    def test_invalid_model(self, client):
        response = client.get("/api/reports/attribution", params={
            "instance_id": 1, "date_from": "2026-03-01", "date_to": "2026-03-31", "model": "markov",
        })

        assert response.status_code == 400

    def test_funnel_shape(self, client):
        response = client.get("/api/reports/funnel", params={
            "instance_id": 1, "date_from": "2026-03-01", "date_to": "2026-03-31",
        })

        assert response.status_code == 200
        assert [s["step"] for s in response.json()["steps"]] == ["form_view", "form_start", "form_complete"]
