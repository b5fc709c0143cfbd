"""Generation attempt and retry scheduling tests.

The provider call is patched; parsing, classification and all store writes
run for real against the test database.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from consum.core.timezone import utcnow
from consum.models.blueprint import BlueprintStatus
from consum.services.exceptions import AiRequestError, ErrorDetails
from consum.services.generation.errors import ErrorClassification
from consum.services.generation.processor import (
    AttemptFailure,
    AttemptSuccess,
    attempt_blueprint_generation,
    process_blueprint_job,
    start_generation_cycle,
)

GENERATE = "consum.services.generation.processor.generate_blueprint_draft"


async def load_state(uow_factory, blueprint_id):
    async with await uow_factory() as uow:
        blueprint = await uow.blueprints.get_by_id(blueprint_id)
        job = await uow.generation_jobs.get_by_blueprint(blueprint_id)
    return blueprint, job


async def create_job(uow_factory, blueprint_id, request, retry_count=0):
    async with await uow_factory() as uow:
        return await uow.generation_jobs.create_job(blueprint_id, request, retry_count=retry_count)


# Generation attempt


@pytest.mark.asyncio
async def test_attempt_success_marks_completed(
    uow_factory, settings, make_blueprint, generation_request, valid_blueprint_json
):
    blueprint_id = await make_blueprint()

    with patch(GENERATE, new=AsyncMock(return_value=valid_blueprint_json)) as mock_generate:
        result = await attempt_blueprint_generation(
            blueprint_id, generation_request, uow_factory, settings
        )

    assert isinstance(result, AttemptSuccess)
    assert result.payload["overview"]["summary"] == "Build a consistent morning focus routine."
    mock_generate.assert_awaited_once()

    blueprint, job = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.COMPLETED
    assert blueprint.ai_output == result.payload
    assert job is None


@pytest.mark.asyncio
async def test_attempt_failure_never_raises_and_writes_nothing(
    uow_factory, settings, make_blueprint, generation_request
):
    blueprint_id = await make_blueprint()

    with patch(GENERATE, new=AsyncMock(side_effect=RuntimeError("kaboom"))):
        result = await attempt_blueprint_generation(
            blueprint_id, generation_request, uow_factory, settings
        )

    assert isinstance(result, AttemptFailure)
    assert result.classification is ErrorClassification.NON_RETRIABLE
    assert result.message == "kaboom"
    assert result.error_type == "unknown"

    blueprint, job = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.PENDING
    assert job is None


@pytest.mark.asyncio
async def test_attempt_failure_carries_diagnostics(
    uow_factory, settings, make_blueprint, generation_request
):
    blueprint_id = await make_blueprint()
    error = AiRequestError(
        "Gemini request failed", 503, ErrorDetails(raw_snippet="overloaded", provider="gemini")
    )

    with patch(GENERATE, new=AsyncMock(side_effect=error)):
        result = await attempt_blueprint_generation(
            blueprint_id, generation_request, uow_factory, settings
        )

    assert isinstance(result, AttemptFailure)
    assert result.is_retriable
    assert result.status_code == 503
    assert result.raw_snippet == "overloaded"
    assert result.last_error == "Gemini request failed | snippet=overloaded"
    assert result.error_type == "503"
    assert result.error is error


@pytest.mark.asyncio
async def test_second_completion_is_a_noop(
    uow_factory, settings, make_blueprint, generation_request, valid_blueprint_json
):
    blueprint_id = await make_blueprint()
    first = valid_blueprint_json
    second = first.replace("morning focus routine", "different output")

    with patch(GENERATE, new=AsyncMock(side_effect=[first, second])):
        await attempt_blueprint_generation(blueprint_id, generation_request, uow_factory, settings)
        result = await attempt_blueprint_generation(
            blueprint_id, generation_request, uow_factory, settings
        )

    assert isinstance(result, AttemptSuccess)
    blueprint, _ = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.COMPLETED
    assert "morning focus routine" in blueprint.ai_output["overview"]["summary"]


# Initial cycle


@pytest.mark.asyncio
async def test_initial_success_creates_no_job(
    uow_factory, settings, make_blueprint, generation_request, valid_blueprint_json
):
    """Provider succeeds, blueprint completed, no job created."""
    blueprint_id = await make_blueprint()

    with patch(GENERATE, new=AsyncMock(return_value=f"```json\n{valid_blueprint_json}\n```")):
        result = await start_generation_cycle(
            blueprint_id, generation_request, uow_factory, settings
        )

    assert result.status == "success"
    blueprint, job = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.COMPLETED
    assert blueprint.ai_output["sections"][0]["title"] == "Morning Protocol"
    assert job is None


@pytest.mark.asyncio
async def test_initial_retriable_failure_creates_job(
    uow_factory, settings, make_blueprint, generation_request
):
    blueprint_id = await make_blueprint()
    before = utcnow()

    with patch(GENERATE, new=AsyncMock(side_effect=AiRequestError("Service unavailable", 503))):
        result = await start_generation_cycle(
            blueprint_id, generation_request, uow_factory, settings
        )

    assert result.status == "retry_scheduled"
    assert result.retry_count == 1

    blueprint, job = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.PENDING
    assert job is not None
    assert job.retry_count == 1
    assert job.error_type == "503"
    assert job.last_error == "Service unavailable"
    assert job.request == generation_request
    assert before + timedelta(seconds=9) <= job.next_retry_at <= utcnow() + timedelta(seconds=10)


@pytest.mark.asyncio
async def test_initial_cycle_purges_stale_jobs(
    uow_factory, settings, make_blueprint, generation_request, valid_blueprint_json
):
    blueprint_id = await make_blueprint()
    await create_job(uow_factory, blueprint_id, generation_request, retry_count=3)

    with patch(GENERATE, new=AsyncMock(return_value=valid_blueprint_json)):
        await start_generation_cycle(blueprint_id, generation_request, uow_factory, settings)

    _, job = await load_state(uow_factory, blueprint_id)
    assert job is None


@pytest.mark.asyncio
async def test_initial_schema_declination_fails_immediately(
    uow_factory, settings, make_blueprint, generation_request
):
    """Schema declination is non-retriable and fails the blueprint at once."""
    blueprint_id = await make_blueprint()

    with patch(GENERATE, new=AsyncMock(return_value="ERROR_JSON_SCHEMA")):
        result = await start_generation_cycle(
            blueprint_id, generation_request, uow_factory, settings
        )

    assert result.status == "failed"
    assert result.reason == "non_retriable"

    blueprint, job = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.FAILED
    assert job is None


# Stored job processing


@pytest.mark.asyncio
async def test_job_success_deletes_job(
    uow_factory, settings, make_blueprint, generation_request, valid_blueprint_json
):
    blueprint_id = await make_blueprint()
    job = await create_job(uow_factory, blueprint_id, generation_request, retry_count=2)

    with patch(GENERATE, new=AsyncMock(return_value=valid_blueprint_json)):
        result = await process_blueprint_job(job, uow_factory, settings)

    assert result.status == "success"
    blueprint, remaining = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.COMPLETED
    assert remaining is None


@pytest.mark.asyncio
async def test_retriable_failure_updates_job_in_place(
    uow_factory, settings, make_blueprint, generation_request
):
    """HTTP 503 moves retry_count 0 -> 1 with next_retry_at about now + 10s."""
    blueprint_id = await make_blueprint()
    job = await create_job(uow_factory, blueprint_id, generation_request, retry_count=0)

    with patch(GENERATE, new=AsyncMock(side_effect=AiRequestError("Service unavailable", 503))):
        result = await process_blueprint_job(job, uow_factory, settings)

    assert result.status == "retry_scheduled"
    assert result.retry_count == 1

    _, updated = await load_state(uow_factory, blueprint_id)
    assert updated.id == job.id
    assert updated.retry_count == 1
    assert updated.error_type == "503"
    delta = (updated.next_retry_at - utcnow()).total_seconds()
    assert 8 <= delta <= 10


@pytest.mark.asyncio
async def test_exhausted_schedule_fails_blueprint(
    uow_factory, settings, make_blueprint, generation_request
):
    """A job at retry_count 4 failing with 500 is terminal."""
    blueprint_id = await make_blueprint()
    job = await create_job(uow_factory, blueprint_id, generation_request, retry_count=4)

    with patch(GENERATE, new=AsyncMock(side_effect=AiRequestError("Internal error", 500))):
        result = await process_blueprint_job(job, uow_factory, settings)

    assert result.status == "failed"
    assert result.reason == "max_retries"
    assert result.error_message == "Internal error"

    blueprint, remaining = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.FAILED
    assert remaining is None


@pytest.mark.asyncio
async def test_non_retriable_failure_ignores_remaining_schedule(
    uow_factory, settings, make_blueprint, generation_request
):
    blueprint_id = await make_blueprint()
    job = await create_job(uow_factory, blueprint_id, generation_request, retry_count=1)

    with patch(GENERATE, new=AsyncMock(side_effect=AiRequestError("Unauthorized", 401))):
        with patch(
            "consum.services.generation.processor.compute_next_retry_schedule"
        ) as mock_schedule:
            result = await process_blueprint_job(job, uow_factory, settings)

    assert result.status == "failed"
    assert result.reason == "non_retriable"
    mock_schedule.assert_not_called()

    blueprint, remaining = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.FAILED
    assert remaining is None


@pytest.mark.asyncio
async def test_repeated_retriable_failures_converge_to_failed(
    uow_factory, settings, make_blueprint, generation_request
):
    """A job that keeps failing is retried exactly four times, then failed."""
    blueprint_id = await make_blueprint()
    mock_generate = AsyncMock(side_effect=AiRequestError("Service unavailable", 503))

    with patch(GENERATE, new=mock_generate):
        result = await start_generation_cycle(
            blueprint_id, generation_request, uow_factory, settings
        )
        outcomes = [result.status]

        while True:
            _, job = await load_state(uow_factory, blueprint_id)
            if job is None:
                break
            result = await process_blueprint_job(job, uow_factory, settings)
            outcomes.append(result.status)

    assert outcomes == ["retry_scheduled"] * 4 + ["failed"]
    assert result.reason == "max_retries"
    assert mock_generate.await_count == 5

    blueprint, job = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.FAILED
    assert job is None


@pytest.mark.asyncio
async def test_stored_snippet_is_bounded(uow_factory, settings, make_blueprint, generation_request):
    blueprint_id = await make_blueprint()
    job = await create_job(uow_factory, blueprint_id, generation_request)
    error = AiRequestError("Bad gateway", 502, ErrorDetails(raw_snippet="x" * 1000))

    with patch(GENERATE, new=AsyncMock(side_effect=error)):
        await process_blueprint_job(job, uow_factory, settings)

    _, updated = await load_state(uow_factory, blueprint_id)
    assert updated.last_error == "Bad gateway | snippet=" + "x" * 300 + "…"


@pytest.mark.asyncio
async def test_purged_job_is_not_recreated_by_retry(
    uow_factory, settings, make_blueprint, generation_request
):
    blueprint_id = await make_blueprint()
    job = await create_job(uow_factory, blueprint_id, generation_request)
    async with await uow_factory() as uow:
        await uow.generation_jobs.delete_job(job.id)

    with patch(GENERATE, new=AsyncMock(side_effect=AiRequestError("Service unavailable", 503))):
        result = await process_blueprint_job(job, uow_factory, settings)

    assert result.status == "retry_scheduled"
    _, remaining = await load_state(uow_factory, blueprint_id)
    assert remaining is None


@pytest.mark.asyncio
@pytest.mark.parametrize("retry_count,status_code", [(1, 401), (4, 503)])
async def test_failing_superseded_job_leaves_new_chain_alone(
    uow_factory,
    settings,
    make_blueprint,
    generation_request,
    valid_blueprint_json,
    retry_count,
    status_code,
):
    """A user retry purges the job mid-attempt; the old attempt's failure must not stick."""
    blueprint_id = await make_blueprint()
    old_job = await create_job(uow_factory, blueprint_id, generation_request, retry_count)
    async with await uow_factory() as uow:
        await uow.generation_jobs.delete_jobs_for_blueprint(blueprint_id)

    with patch(GENERATE, new=AsyncMock(side_effect=AiRequestError("Denied", status_code))):
        stale = await process_blueprint_job(old_job, uow_factory, settings)

    assert stale.status == "failed"
    assert stale.reason == "superseded"
    blueprint, _ = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.PENDING

    with patch(GENERATE, new=AsyncMock(return_value=valid_blueprint_json)):
        fresh = await start_generation_cycle(
            blueprint_id, generation_request, uow_factory, settings
        )

    assert fresh.status == "success"
    blueprint, job = await load_state(uow_factory, blueprint_id)
    assert blueprint.status == BlueprintStatus.COMPLETED
    assert blueprint.ai_output is not None
    assert job is None
