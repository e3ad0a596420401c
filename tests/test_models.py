"""Job state machine and wire-shape tests."""

from datetime import datetime, timezone

import pytest

from tryon.jobs.models import (
    HistoryItem,
    JobStatusResponse,
    JobUpdatePayload,
    TryOnHistory,
    TryOnJob,
    TryOnJobStatus,
    can_transition,
    is_terminal,
    progress_for,
)


def _job(**overrides):
    fields = dict(user_id="user-1", model_image_url="https://cdn.example.com/m.jpg", seed=42)
    fields.update(overrides)
    return TryOnJob(**fields)


class TestProgress:

    @pytest.mark.parametrize("status,expected", [
        (TryOnJobStatus.PENDING, 0),
        (TryOnJobStatus.PROCESSING_UPPER, 25),
        (TryOnJobStatus.PROCESSING_LOWER, 75),
        (TryOnJobStatus.COMPLETED, 100),
        (TryOnJobStatus.FAILED, 0),
    ])
    def test_fixed_progress_per_status(self, status, expected):
        assert progress_for(status) == expected

    def test_accepts_raw_status_strings(self):
        assert progress_for("processing_lower") == 75


class TestTransitions:

    def test_terminal_states(self):
        assert is_terminal(TryOnJobStatus.COMPLETED)
        assert is_terminal(TryOnJobStatus.FAILED)
        assert not is_terminal(TryOnJobStatus.PENDING)
        assert not is_terminal(TryOnJobStatus.PROCESSING_LOWER)

    def test_terminal_states_have_no_exits(self):
        for target in TryOnJobStatus:
            assert not can_transition(TryOnJobStatus.COMPLETED, target)
            assert not can_transition(TryOnJobStatus.FAILED, target)

    def test_every_live_state_can_fail(self):
        for status in (TryOnJobStatus.PENDING, TryOnJobStatus.PROCESSING_UPPER, TryOnJobStatus.PROCESSING_LOWER):
            assert can_transition(status, TryOnJobStatus.FAILED)

    def test_pending_cannot_skip_to_completed(self):
        assert not can_transition(TryOnJobStatus.PENDING, TryOnJobStatus.COMPLETED)
        assert not can_transition(TryOnJobStatus.PENDING, TryOnJobStatus.PROCESSING_LOWER)

    def test_no_backwards_edges(self):
        assert not can_transition(TryOnJobStatus.PROCESSING_LOWER, TryOnJobStatus.PROCESSING_UPPER)
        assert not can_transition(TryOnJobStatus.PROCESSING_UPPER, TryOnJobStatus.PENDING)


class TestWireShapes:

    def test_new_job_defaults(self):
        job = _job()
        assert job.status == TryOnJobStatus.PENDING
        assert job.mode == "quality"
        assert job.category == "auto"
        assert job.save_to_history is False
        assert job.created_at.tzinfo is not None

    def test_status_response_is_camel_case_and_drops_nulls(self):
        job = _job(upper_garment_url="https://u", lower_garment_url="https://l")
        wire = JobStatusResponse.from_job(job).to_wire()
        assert wire["jobId"] == job.id
        assert wire["status"] == "pending"
        assert wire["progress"] == 0
        assert wire["upperGarmentUrl"] == "https://u"
        assert wire["modelImageUrl"] == "https://cdn.example.com/m.jpg"
        assert "resultImageUrl" not in wire
        assert "errorMessage" not in wire

    def test_update_payload_carries_owner_and_result(self):
        job = _job(
            status=TryOnJobStatus.COMPLETED,
            result_image_url="https://r.png",
            processing_time=1234,
            completed_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            metadata={"credits_used": 1},
        )
        wire = JobUpdatePayload.from_job(job).to_wire()
        assert wire["userId"] == "user-1"
        assert wire["progress"] == 100
        assert wire["resultImageUrl"] == "https://r.png"
        assert wire["processingTime"] == 1234
        assert wire["metadata"] == {"credits_used": 1}
        assert wire["completedAt"].startswith("2026-01-01")

    def test_history_item_from_record(self):
        record = TryOnHistory(
            user_id="user-1",
            model_image_url="https://m",
            result_image_url="https://r",
            prediction_id="pred-1",
            processing_time=10,
            is_saved=True,
        )
        wire = HistoryItem.from_record(record).to_wire()
        assert wire["id"] == record.id
        assert wire["isSaved"] is True
        assert wire["predictionId"] == "pred-1"
        assert "userId" not in wire
