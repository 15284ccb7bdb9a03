"""Test job progress tracking and cancellation."""

import pytest

from app.core.exceptions import PipelineCancelled
from app.models.scheme import ProgressLevel
from app.services.progress_tracker import PipelineContext, ProgressTracker, progress_tracker


@pytest.fixture
def tracker():
    job_ids = []

    def start(job_id, total=2, comparison_id="cmp_x"):
        job_ids.append(job_id)
        return progress_tracker.initialize_progress(job_id, total, comparison_id)

    yield start
    for job_id in job_ids:
        progress_tracker.cleanup(job_id)


def test_tracker_is_a_singleton():
    assert ProgressTracker() is progress_tracker


def test_events_raise_percentage_monotonically(tracker):
    context = tracker("job_pct")

    context.emit("fetch", "Fetching")
    context.emit("compare", "Comparing")
    context.emit("extract", "Late extraction event")

    progress = progress_tracker.get_progress("job_pct")
    assert progress["percentage"] == 70
    assert progress["current_step"] == "extract"
    assert [e["stage"] for e in progress["events"]] == ["fetch", "compare", "extract"]


def test_cancel_stops_events(tracker):
    context = tracker("job_cancel")

    assert progress_tracker.cancel("job_cancel") is True
    assert context.cancelled
    assert context.emit("extract", "ignored") is None
    assert context.events[-1].stage == "cancelled"
    assert context.events[-1].level == ProgressLevel.WARNING
    assert progress_tracker.get_progress("job_cancel")["status"] == "cancelled"

    with pytest.raises(PipelineCancelled):
        context.raise_if_cancelled()


def test_cancel_unknown_or_finished_job(tracker):
    assert progress_tracker.cancel("job_nope") is False

    tracker("job_done")
    progress_tracker.mark_completed("job_done", "cmp_x")
    assert progress_tracker.cancel("job_done") is False


def test_completion_after_cancel_is_ignored(tracker):
    tracker("job_late")
    progress_tracker.cancel("job_late")

    progress_tracker.mark_completed("job_late", "cmp_x")
    progress_tracker.mark_error("job_late", "boom")

    assert progress_tracker.get_progress("job_late")["status"] == "cancelled"
    assert progress_tracker.get_progress("job_late")["percentage"] < 100


def test_mark_error(tracker):
    tracker("job_err")
    progress_tracker.mark_error("job_err", "Processing timed out.", error_code="ai_timeout")

    progress = progress_tracker.get_progress("job_err")
    assert progress["status"] == "error"
    assert progress["error_code"] == "ai_timeout"
    assert progress["error_message"] == "Processing timed out."


def test_cleanup_old_entries(tracker):
    tracker("job_old")
    progress_tracker.mark_completed("job_old", "cmp_x")
    progress_tracker._store["job_old"]["last_update"] -= 600

    assert progress_tracker.cleanup_old_entries() >= 1
    assert progress_tracker.get_progress("job_old") is None


def test_context_listener_failure_does_not_break_emit():
    context = PipelineContext("job_listener")

    def broken(event):
        raise RuntimeError("listener down")

    context.add_listener(broken)
    assert context.emit("start", "Starting") is not None
    assert len(context.events) == 1
