"""Tests for single-completion intake."""

import hashlib
import hmac
from datetime import timedelta

import pytest

from src.formflow_analytics.exceptions import ValidationError
from src.formflow_analytics.models.external_completion import ExternalCompletion
from src.formflow_analytics.models.handoff import HandoffStatus
from src.formflow_analytics.schemas.completion import CompletionPayload
from src.formflow_analytics.services.completion_receiver import CompletionReceiver, verify_signature
from src.formflow_analytics.services.touchpoints import find_visitor_by_email
from src.formflow_analytics.timeutil import utcnow
from tests.factories import make_visitor, make_handoff

SECRET = "whsec-test"


def sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


@pytest.fixture
def receiver(db, config):
    return CompletionReceiver(db, config)


class TestVerifySignature:
    """Tests for webhook signature checks."""

    def test_valid_signature(self):
        body = b'{"account_number": "ACC-1"}'

        assert verify_signature(body, sign(body), SECRET)
        assert verify_signature(body, sign(body).upper(), SECRET)

    def test_tampered_body(self):
        assert not verify_signature(b'{"account_number": "ACC-2"}', sign(b'{"account_number": "ACC-1"}'), SECRET)

    def test_missing_signature_or_secret(self):
        body = b"{}"

        assert not verify_signature(body, None, SECRET)
        assert not verify_signature(body, sign(body), "")


class TestReceiveCompletion:
    """Tests for storing and matching a single completion."""

    def test_token_completes_handoff(self, db, receiver):
        visitor_id = make_visitor(db, utcnow() - timedelta(hours=2))
        handoff = make_handoff(db, utcnow() - timedelta(hours=1), visitor_id=visitor_id)

        receipt = receiver.receive_completion(CompletionPayload(
            account_number="ACC-1",
            handoff_token=handoff.handoff_token,
            customer_email="Lee@CreditUnion.org",
        ))

        assert receipt.accepted is True
        assert receipt.matched_handoff is True
        completed = receiver.handoffs.get_handoff(handoff.handoff_token)
        assert completed.status == HandoffStatus.COMPLETED
        assert completed.account_number == "ACC-1"
        stored = db.get(ExternalCompletion, receipt.completion_id)
        assert stored.source == "webhook"
        assert stored.match_strategy == "token"
        assert stored.match_confidence == 1.0
        assert find_visitor_by_email(db, "lee@creditunion.org").visitor_id == visitor_id

    def test_ignored_status(self, db, receiver):
        receipt = receiver.receive_completion(CompletionPayload(account_number="ACC-2", instance_id=1, status="pending"))

        assert receipt.accepted is False
        assert db.query(ExternalCompletion).count() == 0

    def test_duplicate_returns_existing(self, db, receiver):
        payload = CompletionPayload(account_number="ACC-3", instance_id=1)

        first = receiver.receive_completion(payload)
        second = receiver.receive_completion(payload)

        assert second.completion_id == first.completion_id
        assert second.message == "Duplicate completion"
        assert db.query(ExternalCompletion).count() == 1

    def test_already_completed_handoff_not_rematched(self, db, receiver):
        """A second account for a closed handoff is stored but left unmatched."""
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))
        receiver.receive_completion(CompletionPayload(account_number="ACC-4", handoff_token=handoff.handoff_token))

        receipt = receiver.receive_completion(CompletionPayload(account_number="ACC-5", handoff_token=handoff.handoff_token))

        assert receipt.accepted is True
        assert receipt.matched_handoff is False
        assert "completed" in receipt.message
        assert receiver.handoffs.get_handoff(handoff.handoff_token).account_number == "ACC-4"

    def test_unknown_token_needs_instance(self, receiver):
        with pytest.raises(ValidationError):
            receiver.receive_completion(CompletionPayload(account_number="ACC-6", handoff_token="f" * 32))

    def test_unknown_source_rejected(self, receiver):
        with pytest.raises(ValidationError):
            receiver.receive_completion(CompletionPayload(account_number="ACC-7", instance_id=1), source="fax")


class TestCompletionStats:
    def test_stats(self, db, receiver):
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))
        receiver.receive_completion(CompletionPayload(account_number="ACC-8", handoff_token=handoff.handoff_token))
        receiver.receive_completion(CompletionPayload(account_number="ACC-9", instance_id=1), source="redirect")

        today = utcnow().date()
        stats = receiver.get_completion_stats(1, today, today)

        assert stats.total == 2
        assert stats.matched_to_handoff == 1
        assert stats.match_rate == 50.0
        assert stats.by_source == {"webhook": 1, "redirect": 1}
        assert len(receiver.get_recent_completions(1)) == 2
