import pytest

from routeaudit.errors import AuditCancelledError
from routeaudit.orchestrator.context import (
    AuditContext,
    ErrorRecord,
    Phase,
    complete_phase,
    estimate_time_remaining,
    overall_progress,
    record_error,
    reset_progress,
    start_phase,
    update_progress,
)
from routeaudit.orchestrator.events import CancellationToken, EventSink, EventType


def test_overall_progress_weights():
    assert overall_progress(Phase.DISCOVERY, 0) == 0
    assert overall_progress(Phase.DISCOVERY, 50) == 10
    assert overall_progress(Phase.MATCHING, 0) == 20
    assert overall_progress(Phase.VERIFICATION, 50) == 55
    assert overall_progress(Phase.ANALYSIS, 100) == 90
    assert overall_progress(Phase.REPORTING, 100) == 100


def test_estimate_time_remaining():
    assert estimate_time_remaining(10.0, 0) is None
    assert estimate_time_remaining(10.0, 25) == pytest.approx(30.0)
    assert estimate_time_remaining(10.0, 100) == 0


def test_update_progress_clamps_and_tracks_elapsed():
    ctx = reset_progress(AuditContext(), now=100.0)
    ctx = update_progress(ctx, Phase.MATCHING, 150, now=104.0, message="matching")
    p = ctx.progress
    assert p.phase_progress == 100
    assert p.overall_progress == 35
    assert p.elapsed_time == 4.0
    assert p.message == "matching"


def test_phase_timings():
    ctx = reset_progress(AuditContext(), now=0.0)
    ctx = start_phase(ctx, Phase.DISCOVERY, now=1.0)
    assert ctx.progress.phase_times[Phase.DISCOVERY].duration is None
    ctx = complete_phase(ctx, Phase.DISCOVERY, now=3.5)
    assert ctx.progress.phase_times[Phase.DISCOVERY].duration == 2.5
    assert ctx.progress.overall_progress == 20


def test_reset_progress_keeps_errors():
    ctx = record_error(AuditContext(), ErrorRecord(phase=Phase.VERIFICATION, error="down", step="database"))
    ctx = update_progress(reset_progress(ctx, 0.0), Phase.ANALYSIS, 50, 1.0)
    ctx = reset_progress(ctx, 5.0)
    assert ctx.progress.overall_progress == 0
    assert ctx.started_at == 5.0
    assert len(ctx.errors) == 1


def test_cancellation_token():
    token = CancellationToken()
    token.raise_if_cancelled(Phase.DISCOVERY)
    token.cancel()
    assert token.cancelled
    with pytest.raises(AuditCancelledError) as info:
        token.raise_if_cancelled(Phase.ANALYSIS)
    assert info.value.phase == Phase.ANALYSIS


def test_event_sink_unsubscribe_and_failing_listener():
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    sink = EventSink([broken])
    unsubscribe = sink.subscribe(seen.append)
    event = sink.emit(EventType.PROGRESS, Phase.MATCHING, overall_progress=20.0)

    assert seen == [event]
    assert event.payload == {"overall_progress": 20.0}
    unsubscribe()
    unsubscribe()
    sink.emit(EventType.AUDIT_START)
    assert len(seen) == 1
