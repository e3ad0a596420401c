"""Submit, process, cancel and recover try-on jobs end to end against fakes."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import MODEL_URL, OTHER_USER, USER, drain, failed
from tryon.jobs.errors import JobConflictError, JobNotFoundError, TryOnApiError, TryOnValidationError
from tryon.jobs.models import TryOnJob, TryOnJobStatus, TryOnRequest
from tryon.jobs.orchestrator import CANCELLED_MESSAGE, INTERRUPTED_MESSAGE, MAX_SEED, SUBMITTED_MESSAGE
from tryon.notify.notifier import JOB_COMPLETED, JOB_FAILED, JOB_PROCESSING, JOB_UPDATE

UPPER = "https://cdn.example.com/shirt.png"
LOWER = "https://cdn.example.com/jeans.png"
OUTFIT = "https://cdn.example.com/outfit.png"
GARMENTS = [
    "https://cdn.example.com/g1.png",
    "https://cdn.example.com/g2.png",
    "https://cdn.example.com/g3.png",
]


def upper_lower(**overrides):
    fields = dict(model_image_url=MODEL_URL, upper_garment_url=UPPER, lower_garment_url=LOWER)
    fields.update(overrides)
    return TryOnRequest(**fields)


def statuses(events):
    return [e.data["status"] for e in events if e.event == JOB_UPDATE]


class TestSubmit:

    def test_persists_pending_job_and_schedules_it(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower(seed=7))
            job = await harness.store.get(response.job_id)
            return response, job

        response, job = asyncio.run(scenario())
        assert response.status == TryOnJobStatus.PENDING
        assert response.message == SUBMITTED_MESSAGE
        assert harness.dispatcher.submitted == [response.job_id]
        assert job.user_id == USER
        assert job.seed == 7
        assert job.mode == "quality"
        assert job.category == "auto"
        assert harness.client.calls == []

    def test_random_seed_when_omitted(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            return await harness.store.get(response.job_id)

        job = asyncio.run(scenario())
        assert 0 <= job.seed < MAX_SEED

    @pytest.mark.parametrize("request_fields", [
        {},
        {"upper_garment_url": UPPER},
        {"lower_garment_url": LOWER},
        {"garment_urls": []},
    ])
    def test_rejects_missing_garments(self, harness, request_fields):
        request = TryOnRequest(model_image_url=MODEL_URL, **request_fields)
        with pytest.raises(TryOnValidationError, match="Must provide either garmentUrls"):
            asyncio.run(harness.orchestrator.submit(USER, request))
        assert harness.dispatcher.submitted == []

    def test_falls_back_to_default_profile_image(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower(model_image_url=None))
            return await harness.store.get(response.job_id)

        job = asyncio.run(scenario())
        assert job.model_image_url == "https://cdn.example.com/selfie.jpg"

    def test_rejects_without_any_model_image(self, harness):
        with pytest.raises(TryOnValidationError, match="No model image provided"):
            asyncio.run(harness.orchestrator.submit(OTHER_USER, upper_lower(model_image_url=None)))
        assert asyncio.run(harness.store.list_for_user(OTHER_USER)) == []

    def test_garment_shape_checked_before_model_image(self, harness):
        request = TryOnRequest(model_image_url=None)
        with pytest.raises(TryOnValidationError, match="Must provide either garmentUrls"):
            asyncio.run(harness.orchestrator.submit(OTHER_USER, request))


class TestUpperLowerStrategy:

    def test_combines_pair_and_completes(self, harness):
        async def scenario():
            sub = harness.notifier.subscribe(USER)
            response = await harness.orchestrator.submit(USER, upper_lower(seed=11, mode="balanced"))
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id), drain(sub)

        job, events = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.COMPLETED
        assert job.lower_prediction_id == "pred-1"
        assert job.result_image_url == f"https://storage.test/tryon-results/combined_{job.id}.png"
        assert job.processing_time is not None and job.processing_time >= 0
        assert job.completed_at is not None
        assert job.metadata["approach"] == "combined-single-call"
        assert job.metadata["combined_garment_url"] == f"https://storage.test/garment-combinations/outfit_{job.id}.png"
        assert job.metadata["original_result_url"] == "https://cdn.fashn.ai/pred-1/output.png"

        assert harness.combiner.calls == [[UPPER, LOWER]]
        (call,) = harness.client.calls
        assert call.model_image == MODEL_URL
        assert call.garment_image == job.metadata["combined_garment_url"]
        assert call.category == "auto"
        assert call.seed == 11
        assert call.mode == "balanced"

        assert statuses(events) == ["processing_upper", "processing_lower", "completed"]
        assert [e.data["progress"] for e in events if e.event == JOB_UPDATE] == [25, 75, 100]
        steps = [e.data["step"] for e in events if e.event == JOB_PROCESSING]
        assert steps == ["upper", "lower"]
        assert [e.event for e in events][-1] == JOB_COMPLETED

    def test_api_failure_fails_job(self, harness):
        harness.client._outcomes.append(failed("pred-1", "No person detected"))

        async def scenario():
            sub = harness.notifier.subscribe(USER)
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id), drain(sub)

        job, events = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.FAILED
        assert job.error_message == "Lower garment try-on failed: No person detected"
        assert job.processing_time is not None
        assert job.completed_at is not None
        assert job.result_image_url is None
        assert events[-1].event == JOB_FAILED
        assert events[-1].data["progress"] == 0

    def test_combine_failure_skips_api(self, harness):
        harness.combiner.fail = True

        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id)

        job = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.FAILED
        assert job.error_message == "Failed to combine garment images: Garment image 2 could not be decoded"
        assert harness.client.calls == []

    def test_client_exception_recorded_on_job(self, harness):
        harness.client._outcomes.append(TryOnApiError("FASHN API returned 500", status_code=500))

        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id)

        job = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.FAILED
        assert job.error_message == "FASHN API returned 500"


class TestGarmentArrayStrategy:

    def test_single_call_with_combined_image(self, harness):
        async def scenario():
            sub = harness.notifier.subscribe(USER)
            response = await harness.orchestrator.submit(
                USER, TryOnRequest(model_image_url=MODEL_URL, garment_urls=GARMENTS, category="tops")
            )
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id), drain(sub)

        job, events = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.COMPLETED
        assert job.upper_prediction_id == "pred-1"
        assert job.lower_prediction_id is None
        assert job.metadata["garment_count"] == 3
        assert harness.combiner.calls == [GARMENTS]

        folder, filename, _ = harness.images.buffers[0]
        assert folder == "tryon-combined-garments"
        assert filename == f"combined-garments-{job.id}.png"
        (call,) = harness.client.calls
        assert call.category == "auto"
        assert statuses(events) == ["processing_upper", "completed"]

    def test_garment_array_takes_priority(self, harness):
        request = TryOnRequest(
            model_image_url=MODEL_URL,
            garment_urls=GARMENTS[:2],
            outfit_image_url=OUTFIT,
            upper_garment_url=UPPER,
            lower_garment_url=LOWER,
        )

        async def scenario():
            response = await harness.orchestrator.submit(USER, request)
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id)

        job = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.COMPLETED
        assert harness.combiner.calls == [GARMENTS[:2]]
        assert harness.client.calls[0].garment_image != OUTFIT


class TestOutfitStrategy:

    def test_uses_job_category_without_combining(self, harness):
        request = TryOnRequest(model_image_url=MODEL_URL, outfit_image_url=OUTFIT, category="one-pieces")

        async def scenario():
            response = await harness.orchestrator.submit(USER, request)
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id)

        job = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.COMPLETED
        assert harness.combiner.calls == []
        (call,) = harness.client.calls
        assert call.garment_image == OUTFIT
        assert call.category == "one-pieces"
        assert job.metadata["category"] == "one-pieces"

    def test_outfit_over_upper_lower(self, harness):
        request = TryOnRequest(
            model_image_url=MODEL_URL, outfit_image_url=OUTFIT,
            upper_garment_url=UPPER, lower_garment_url=LOWER,
        )

        async def scenario():
            response = await harness.orchestrator.submit(USER, request)
            await harness.runner.process(response.job_id)

        asyncio.run(scenario())
        assert harness.combiner.calls == []
        assert harness.client.calls[0].garment_image == OUTFIT

    def test_failed_prediction_message_passes_through(self, harness):
        harness.client._outcomes.append(failed("pred-1", "Garment not detected"))
        request = TryOnRequest(model_image_url=MODEL_URL, outfit_image_url=OUTFIT)

        async def scenario():
            response = await harness.orchestrator.submit(USER, request)
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id)

        job = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.FAILED
        assert job.error_message == "Garment not detected"


class TestResultPersistence:

    def test_storage_failure_falls_back_to_upstream_url(self, harness):
        harness.images.fail_copy = True

        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id)

        job = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.COMPLETED
        assert job.result_image_url == "https://cdn.fashn.ai/pred-1/output.png"
        assert "storage_key" not in job.metadata

    def test_saves_history_when_requested(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower(save_to_history=True))
            await harness.runner.process(response.job_id)
            job = await harness.store.get(response.job_id)
            record = await harness.history.get(USER, job.history_id)
            return job, record

        job, record = asyncio.run(scenario())
        assert record is not None
        assert record.is_saved is True
        assert record.result_image_url == job.result_image_url
        assert record.prediction_id == job.lower_prediction_id
        assert record.upper_garment_url == UPPER

    def test_no_history_by_default(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id), await harness.history.count(USER)

        job, count = asyncio.run(scenario())
        assert job.history_id is None
        assert count == 0


class TestQueries:

    def test_status_is_owner_scoped(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            mine = await harness.orchestrator.get_status(USER, response.job_id)
            with pytest.raises(JobNotFoundError):
                await harness.orchestrator.get_status(OTHER_USER, response.job_id)
            return mine

        status = asyncio.run(scenario())
        assert status.progress == 0
        assert status.upper_garment_url == UPPER

    def test_missing_job(self, harness):
        with pytest.raises(JobNotFoundError, match="Job nope not found"):
            asyncio.run(harness.orchestrator.get_status(USER, "nope"))

    def test_list_newest_first_with_filter_and_limit(self, harness):
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)

        async def scenario():
            for n, status in enumerate([
                TryOnJobStatus.COMPLETED, TryOnJobStatus.FAILED, TryOnJobStatus.COMPLETED, TryOnJobStatus.PENDING,
            ]):
                await harness.store.create(TryOnJob(
                    id=f"job-{n}", user_id=USER, model_image_url=MODEL_URL, seed=1,
                    status=status, created_at=base + timedelta(minutes=n),
                ))
            await harness.store.create(TryOnJob(id="theirs", user_id=OTHER_USER, model_image_url=MODEL_URL, seed=1))
            everything = await harness.orchestrator.list_jobs(USER)
            done = await harness.orchestrator.list_jobs(USER, status=TryOnJobStatus.COMPLETED)
            latest = await harness.orchestrator.list_jobs(USER, limit=2)
            return everything, done, latest

        everything, done, latest = asyncio.run(scenario())
        assert [j.job_id for j in everything] == ["job-3", "job-2", "job-1", "job-0"]
        assert [j.job_id for j in done] == ["job-2", "job-0"]
        assert [j.job_id for j in latest] == ["job-3", "job-2"]


class TestCancel:

    def test_cancel_pending_job_prevents_processing(self, harness):
        async def scenario():
            sub = harness.notifier.subscribe(USER)
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.orchestrator.cancel(USER, response.job_id)
            await harness.runner.process(response.job_id)
            return await harness.store.get(response.job_id), drain(sub)

        job, events = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.FAILED
        assert job.error_message == CANCELLED_MESSAGE
        assert job.completed_at is not None
        assert harness.client.calls == []
        assert [e.event for e in events] == [JOB_UPDATE, JOB_FAILED]

    def test_cancel_during_api_call_drops_result(self, harness):
        async def scenario():
            harness.client.hold()
            sub = harness.notifier.subscribe(USER)
            response = await harness.orchestrator.submit(USER, upper_lower(save_to_history=True))
            task = asyncio.create_task(harness.runner.process(response.job_id))
            await harness.client.entered.wait()

            await harness.orchestrator.cancel(USER, response.job_id)
            harness.client.release()
            await task
            job = await harness.store.get(response.job_id)
            return job, drain(sub), await harness.history.count(USER)

        job, events, history_count = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.FAILED
        assert job.error_message == CANCELLED_MESSAGE
        assert job.result_image_url is None
        assert job.history_id is None
        assert history_count == 0
        assert JOB_COMPLETED not in [e.event for e in events]
        assert statuses(events)[-1] == "failed"

    def test_cannot_cancel_terminal_job(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.runner.process(response.job_id)
            await harness.orchestrator.cancel(USER, response.job_id)

        with pytest.raises(JobConflictError, match="Cannot cancel job with status: completed"):
            asyncio.run(scenario())

    def test_cancel_twice_conflicts(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.orchestrator.cancel(USER, response.job_id)
            await harness.orchestrator.cancel(USER, response.job_id)

        with pytest.raises(JobConflictError, match="status: failed"):
            asyncio.run(scenario())

    def test_cannot_cancel_someone_elses_job(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            with pytest.raises(JobNotFoundError):
                await harness.orchestrator.cancel(OTHER_USER, response.job_id)
            return await harness.store.get(response.job_id)

        job = asyncio.run(scenario())
        assert job.status == TryOnJobStatus.PENDING


class TestRecovery:

    def test_requeues_pending_and_fails_orphans(self, harness):
        async def scenario():
            for job_id, status in [
                ("pending", TryOnJobStatus.PENDING),
                ("upper", TryOnJobStatus.PROCESSING_UPPER),
                ("lower", TryOnJobStatus.PROCESSING_LOWER),
                ("done", TryOnJobStatus.COMPLETED),
            ]:
                await harness.store.create(TryOnJob(
                    id=job_id, user_id=USER, model_image_url=MODEL_URL, seed=1, status=status,
                ))
            recovered = await harness.orchestrator.recover()
            jobs = {j: await harness.store.get(j) for j in ("pending", "upper", "lower", "done")}
            return recovered, jobs

        recovered, jobs = asyncio.run(scenario())
        assert recovered == 1
        assert harness.dispatcher.submitted == ["pending"]
        assert jobs["pending"].status == TryOnJobStatus.PENDING
        for orphan in ("upper", "lower"):
            assert jobs[orphan].status == TryOnJobStatus.FAILED
            assert jobs[orphan].error_message == INTERRUPTED_MESSAGE
        assert jobs["done"].status == TryOnJobStatus.COMPLETED
        assert jobs["done"].error_message is None


class TestRunnerGuards:

    def test_missing_job_is_ignored(self, harness):
        asyncio.run(harness.runner.process("missing"))
        assert harness.client.calls == []

    def test_completed_job_is_not_reprocessed(self, harness):
        async def scenario():
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.runner.process(response.job_id)
            await harness.runner.process(response.job_id)

        asyncio.run(scenario())
        assert len(harness.client.calls) == 1

    def test_events_only_reach_owner(self, harness):
        async def scenario():
            mine = harness.notifier.subscribe(USER)
            theirs = harness.notifier.subscribe(OTHER_USER)
            response = await harness.orchestrator.submit(USER, upper_lower())
            await harness.runner.process(response.job_id)
            return drain(mine), drain(theirs)

        mine, theirs = asyncio.run(scenario())
        assert mine
        assert theirs == []
        assert all(e.data["userId"] == USER for e in mine)
