"""
Tests for webhook latency analytics and SLA evaluation.
"""
import datetime as dt

import pytest

from src.analytics.recorder import AnalyticsRecorder
from src.models.webhook_metric import MetricStatus, get_sla_target


@pytest.fixture
def recorder(db, clock):
    return AnalyticsRecorder(db, clock=clock)


class TestRecording:

    async def test_full_lifecycle_durations(self, recorder, clock):
        received = clock.now
        await recorder.record_received("wh-1", "ContactCreate", "contacts", "loc1", received_at=received)

        clock.advance(2)
        await recorder.record_processing_started("wh-1")
        clock.advance(0.5)
        await recorder.record_processing_completed("wh-1", True)

        metric = await recorder.get_metric("wh-1")
        assert metric.status == MetricStatus.SUCCESS
        assert metric.attempts == 1
        assert metric.queue_wait_duration == pytest.approx(2000)
        assert metric.processing_duration == pytest.approx(500)
        assert metric.total_duration == pytest.approx(2500)
        assert metric.exceeds_sla is False

    @pytest.mark.parametrize("elapsed_s,violates", [(29, False), (31, True)])
    async def test_appointments_sla(self, recorder, clock, elapsed_s, violates):
        await recorder.record_received("wh-appt", "AppointmentCreate", "appointments", received_at=clock.now)
        clock.advance(elapsed_s)
        await recorder.record_processing_started("wh-appt")
        await recorder.record_processing_completed("wh-appt", True)

        metric = await recorder.get_metric("wh-appt")
        assert metric.sla_target == 30_000
        assert metric.exceeds_sla is violates

    async def test_failure_records_error(self, recorder, clock):
        await recorder.record_received("wh-1", "InvoicePaid", "financial")
        await recorder.record_processing_started("wh-1")
        await recorder.record_processing_completed("wh-1", False, "invoice id missing")

        metric = await recorder.get_metric("wh-1")
        assert metric.status == MetricStatus.FAILED
        assert metric.error == "invoice id missing"

    async def test_received_is_idempotent(self, recorder, clock):
        first = clock.now
        await recorder.record_received("wh-1", "ContactCreate", "contacts", received_at=first)
        clock.advance(10)
        await recorder.record_received("wh-1", "ContactCreate", "contacts", received_at=clock.now)

        metric = await recorder.get_metric("wh-1")
        assert metric.webhook_received_at == first

    async def test_unknown_webhook_is_ignored(self, recorder):
        await recorder.record_processing_started("missing")
        await recorder.record_processing_completed("missing", True)

        assert await recorder.get_metric("missing") is None

    def test_sla_table(self):
        assert get_sla_target("critical") == 5_000
        assert get_sla_target("messages") == 2_000
        assert get_sla_target("unknown") == 60_000


class TestAnalyticsReport:

    async def test_summary_by_queue_type(self, recorder, clock):
        start = clock.now
        for n, (queue_type, elapsed, ok) in enumerate([
            ("contacts", 1, True),
            ("contacts", 3, False),
            ("messages", 5, True),
        ]):
            webhook_id = f"wh-{n}"
            await recorder.record_received(webhook_id, "X", queue_type, received_at=clock.now)
            clock.advance(elapsed)
            await recorder.record_processing_started(webhook_id)
            await recorder.record_processing_completed(webhook_id, ok, None if ok else "boom")

        report = await recorder.get_analytics(start, clock.now + dt.timedelta(seconds=1))

        assert report.total == 3
        by_queue = {s.queue_type: s for s in report.by_queue_type}
        assert by_queue["contacts"].count == 2
        assert by_queue["contacts"].success == 1
        assert by_queue["contacts"].failed == 1
        assert by_queue["contacts"].avg_total_ms == pytest.approx(2000)
        assert by_queue["messages"].sla_violations == 1
        assert report.top_errors[0].error == "boom"
        assert report.slowest[0].webhook_id == "wh-2"

    async def test_window_excludes_older_webhooks(self, recorder, clock):
        await recorder.record_received("wh-old", "X", "general", received_at=clock.now)
        clock.advance(3600)
        start = clock.now
        await recorder.record_received("wh-new", "X", "general", received_at=clock.now)

        report = await recorder.get_analytics(start, clock.now)

        assert report.total == 1
