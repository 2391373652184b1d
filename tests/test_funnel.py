"""Tests for funnel aggregation."""

from datetime import datetime, timedelta, timezone

import pytest

from src.formflow_analytics.services.funnel import FunnelAggregator
from tests.factories import make_visitor, make_touch

T = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
DAY = T.date()


@pytest.fixture
def aggregator(db, config):
    return FunnelAggregator(db, config)


@pytest.fixture
def three_visitors(db):
    """A finishes, B stops after starting, C only views."""
    a = make_visitor(db, T)
    b = make_visitor(db, T)
    c = make_visitor(db, T)
    for visitor_id in (a, b, c):
        make_touch(db, visitor_id, T, touch_type="form_view")
    make_touch(db, a, T + timedelta(seconds=60), touch_type="form_start")
    make_touch(db, b, T + timedelta(seconds=120), touch_type="form_start")
    make_touch(db, a, T + timedelta(seconds=300), touch_type="form_complete")
    return a, b, c


class TestFunnel:
    """Tests for entered counts, drop-off and step timing."""

    def test_default_steps(self, aggregator, three_visitors):
        result = aggregator.get_funnel(1, DAY, DAY)

        assert [s.step for s in result.steps] == ["form_view", "form_start", "form_complete"]
        assert [s.entered for s in result.steps] == [3, 2, 1]
        assert [s.drop_off_rate for s in result.steps] == [33.3, 50.0, 0.0]
        assert result.overall_conversion_rate == 33.3

    def test_time_on_step(self, aggregator, three_visitors):
        result = aggregator.get_funnel(1, DAY, DAY)

        assert result.steps[0].avg_time_on_step_seconds == 90.0
        assert result.steps[1].avg_time_on_step_seconds == 240.0
        assert result.steps[2].avg_time_on_step_seconds == 0.0

    def test_repeat_touches_count_visitor_once(self, db, aggregator, three_visitors):
        a, _, _ = three_visitors
        make_touch(db, a, T + timedelta(minutes=10), touch_type="form_view")

        result = aggregator.get_funnel(1, DAY, DAY)

        assert result.steps[0].entered == 3

    def test_named_form_steps(self, db, aggregator):
        """Custom steps match the step name recorded on form_step touches."""
        a = make_visitor(db, T)
        b = make_visitor(db, T)
        for visitor_id in (a, b):
            make_touch(db, visitor_id, T, touch_type="form_view")
            make_touch(db, visitor_id, T + timedelta(seconds=30), touch_type="form_step", step="income")
        make_touch(db, a, T + timedelta(seconds=90), touch_type="form_step", step="employment")

        result = aggregator.get_funnel(1, DAY, DAY, steps=["form_view", "income", "employment"])

        assert [s.entered for s in result.steps] == [2, 2, 1]
        assert result.steps[1].drop_off_rate == 50.0
        assert result.steps[1].avg_time_on_step_seconds == 60.0
        assert result.overall_conversion_rate == 50.0

    def test_later_step_larger_than_earlier(self, db, aggregator):
        """Drop-off never goes negative when visitors skip a step."""
        a = make_visitor(db, T)
        b = make_visitor(db, T)
        make_touch(db, a, T, touch_type="form_view")
        make_touch(db, a, T + timedelta(seconds=10), touch_type="form_start")
        make_touch(db, b, T + timedelta(seconds=20), touch_type="form_start")

        result = aggregator.get_funnel(1, DAY, DAY)

        assert result.steps[0].drop_off_rate == 0.0

    def test_other_instances_and_days_excluded(self, db, aggregator):
        visitor_id = make_visitor(db, T)
        make_touch(db, visitor_id, T, touch_type="form_view", instance_id=2)
        make_touch(db, visitor_id, T - timedelta(days=2), touch_type="form_view")

        result = aggregator.get_funnel(1, DAY, DAY)

        assert [s.entered for s in result.steps] == [0, 0, 0]
        assert result.overall_conversion_rate == 0.0
