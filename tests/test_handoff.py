"""Tests for the handoff lifecycle."""

from datetime import timedelta
from urllib.parse import urlparse, parse_qs

import pytest

from src.formflow_analytics.exceptions import NotFoundError, AlreadyTerminalError, ConflictError
from src.formflow_analytics.models.handoff import HandoffStatus
from src.formflow_analytics.models.touchpoint import Touchpoint
from src.formflow_analytics.services.handoff import HandoffService, build_tracked_url
from src.formflow_analytics.timeutil import utcnow, as_utc
from tests.factories import make_visitor, make_handoff


@pytest.fixture
def service(db, config):
    return HandoffService(db, config)


class TestIssue:
    """Tests for issuing handoffs."""

    def test_issue_builds_tracked_url(self, db, service):
        """The redirect URL carries the token and keeps existing query params."""
        visitor_id = make_visitor(db, utcnow())

        issued = service.issue(
            instance_id=1,
            destination_url="https://enroll.example.org/apply?product=checking",
            visitor_id=visitor_id,
            attribution={"utm_source": "google"},
            params={"lang": "en"},
        )

        query = parse_qs(urlparse(issued.redirect_url).query)
        assert query["isf_ref"] == [issued.token]
        assert query["product"] == ["checking"]
        assert query["lang"] == ["en"]
        assert len(issued.token) == 32

        handoff = service.get_handoff(issued.token)
        assert handoff.status == HandoffStatus.CREATED
        assert "captured_at" in handoff.attribution

    def test_issue_records_handoff_touch(self, db, service):
        visitor_id = make_visitor(db, utcnow())

        service.issue(instance_id=1, destination_url="https://enroll.example.org", visitor_id=visitor_id)

        touches = db.query(Touchpoint).filter(Touchpoint.visitor_id == visitor_id).all()
        assert [t.touch_type for t in touches] == ["handoff"]

    def test_build_tracked_url_without_query(self):
        assert build_tracked_url("https://x.example.org/apply", "a" * 32) == "https://x.example.org/apply?isf_ref=" + "a" * 32


class TestTransitions:
    """Tests for redirect, completion and abandonment."""

    def test_complete_from_created(self, db, service):
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))

        completed = service.complete(handoff.handoff_token, account_number="ACC-1", metadata={"product": "checking"})

        assert completed.status == HandoffStatus.COMPLETED
        assert completed.account_number == "ACC-1"
        assert completed.completed_at is not None

    def test_complete_from_redirected(self, db, service):
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))
        service.mark_redirected(handoff.handoff_token)

        completed = service.complete(handoff.handoff_token, account_number="ACC-2")

        assert completed.status == HandoffStatus.COMPLETED
        assert completed.redirected_at is not None

    def test_second_completion_conflicts(self, db, service):
        """A completed handoff is never completed twice."""
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))
        first = service.complete(handoff.handoff_token, account_number="ACC-3")
        first_completed_at = as_utc(first.completed_at)

        with pytest.raises(AlreadyTerminalError) as exc_info:
            service.complete(handoff.handoff_token, account_number="ACC-OTHER")

        assert exc_info.value.status == "completed"
        again = service.get_handoff(handoff.handoff_token)
        assert as_utc(again.completed_at) == first_completed_at
        assert again.account_number == "ACC-3"

    def test_abandoned_cannot_complete(self, db, service):
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))
        service.abandon(handoff.handoff_token)

        with pytest.raises(ConflictError):
            service.complete(handoff.handoff_token, account_number="ACC-4")

    def test_expired_cannot_complete(self, db, service, config):
        """Open handoffs older than the TTL read as expired and reject completion."""
        handoff = make_handoff(db, utcnow() - timedelta(hours=config.handoff_ttl_hours + 1))

        assert service.effective_status(handoff) == HandoffStatus.EXPIRED
        with pytest.raises(AlreadyTerminalError) as exc_info:
            service.complete(handoff.handoff_token, account_number="ACC-5")
        assert exc_info.value.status == "expired"

    def test_unknown_token(self, service):
        with pytest.raises(NotFoundError):
            service.complete("0" * 32, account_number="ACC-6")

    def test_mark_redirected_idempotent(self, db, service):
        """Repeated redirects keep the first redirect timestamp."""
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))

        first = as_utc(service.mark_redirected(handoff.handoff_token).redirected_at)
        second = service.mark_redirected(handoff.handoff_token)

        assert second.status == HandoffStatus.REDIRECTED
        assert as_utc(second.redirected_at) == first

    def test_abandon_terminal_is_noop(self, db, service):
        handoff = make_handoff(db, utcnow() - timedelta(hours=1))
        service.complete(handoff.handoff_token, account_number="ACC-7")

        result = service.abandon(handoff.handoff_token)

        assert result.status == HandoffStatus.COMPLETED

    def test_process_redirect(self, db, service):
        make_handoff(db, utcnow() - timedelta(minutes=5), token="b" * 32)

        assert service.process_redirect("b" * 32) == "https://enroll.example.org/apply"
        assert service.get_handoff("b" * 32).status == HandoffStatus.REDIRECTED
        assert service.process_redirect("not-a-token") is None
        assert service.process_redirect("c" * 32) is None


class TestStats:
    """Tests for handoff statistics."""

    def test_empty_stats_fully_keyed(self, service):
        today = utcnow().date()

        stats = service.get_stats(1, today, today)

        assert stats.total == 0
        assert set(stats.by_status) == {"created", "redirected", "completed", "abandoned", "expired"}
        assert stats.completion_rate == 0.0
        assert stats.avg_completion_hours == 0.0

    def test_completion_rate_over_closed_handoffs(self, db, service, config):
        now = utcnow()
        done = make_handoff(db, now - timedelta(hours=2))
        service.complete(done.handoff_token, account_number="A", completed_at=now)
        gone = make_handoff(db, now - timedelta(hours=1))
        service.abandon(gone.handoff_token)
        make_handoff(db, now - timedelta(minutes=30))

        stats = service.get_stats(1, (now - timedelta(days=1)).date(), now.date())

        assert stats.total == 3
        assert stats.by_status["completed"] == 1
        assert stats.by_status["abandoned"] == 1
        assert stats.by_status["created"] == 1
        assert stats.completion_rate == 50.0
        assert stats.avg_completion_hours == 2.0

    def test_stats_range_excludes_other_days(self, db, service):
        make_handoff(db, utcnow() - timedelta(days=3))

        today = utcnow().date()
        stats = service.get_stats(1, today, today)

        assert stats.total == 0
