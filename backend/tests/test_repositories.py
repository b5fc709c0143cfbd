"""Repository tests for the job store and blueprint store.

Tests focus on:
- One live job per blueprint and idempotent purges
- Due-job ordering and batch limits
- Conditional status updates
- Orphaned pending blueprint detection
- Claim leases and naive timestamp columns
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from consum.core.timezone import utcnow
from consum.models.blueprint import Blueprint, BlueprintStatus
from consum.models.generation_job import GenerationJob
from consum.repositories.blueprint import BlueprintRepository
from consum.repositories.generation_job import GenerationJobRepository


@pytest.mark.asyncio
async def test_delete_jobs_for_blueprint_without_jobs_returns_zero(session, make_blueprint):
    blueprint_id = await make_blueprint()
    repo = GenerationJobRepository(session)

    assert await repo.delete_jobs_for_blueprint(blueprint_id) == 0
    assert await repo.delete_jobs_for_blueprint(uuid4()) == 0
    assert await repo.get_by_blueprint(blueprint_id) is None


@pytest.mark.asyncio
async def test_create_job_replaces_existing_job(session, make_blueprint, generation_request):
    blueprint_id = await make_blueprint()
    repo = GenerationJobRepository(session)

    first = await repo.create_job(blueprint_id, generation_request, retry_count=3)
    second = await repo.create_job(blueprint_id, generation_request)
    await session.commit()

    live = await repo.get_by_blueprint(blueprint_id)
    assert live is not None
    assert live.id == second.id
    assert live.id != first.id
    assert live.retry_count == 0
    assert await repo.get_by_id(first.id) is None


@pytest.mark.asyncio
async def test_purge_then_create_leaves_one_job(session, make_blueprint, generation_request):
    blueprint_id = await make_blueprint()
    repo = GenerationJobRepository(session)
    await repo.create_job(blueprint_id, generation_request)

    assert await repo.delete_jobs_for_blueprint(blueprint_id) == 1
    await repo.create_job(blueprint_id, generation_request)
    await session.commit()

    assert await repo.get_by_blueprint(blueprint_id) is not None


@pytest.mark.asyncio
async def test_update_job_changes_bookkeeping(session, make_blueprint, generation_request):
    blueprint_id = await make_blueprint()
    repo = GenerationJobRepository(session)
    job = await repo.create_job(blueprint_id, generation_request)
    job_id = job.id
    next_retry_at = utcnow() + timedelta(seconds=30)

    updated = await repo.update_job(
        job_id, retry_count=2, next_retry_at=next_retry_at, last_error="boom", error_type="503"
    )
    await session.commit()

    assert updated is True
    session.expire_all()
    reloaded = await repo.get_by_id(job_id)
    assert reloaded.retry_count == 2
    assert reloaded.next_retry_at == next_retry_at
    assert reloaded.last_error == "boom"
    assert reloaded.error_type == "503"


@pytest.mark.asyncio
async def test_update_job_rejects_unknown_fields(session, make_blueprint, generation_request):
    blueprint_id = await make_blueprint()
    repo = GenerationJobRepository(session)
    job = await repo.create_job(blueprint_id, generation_request)

    with pytest.raises(ValueError, match="request_data"):
        await repo.update_job(job.id, request_data={})


@pytest.mark.asyncio
async def test_update_and_delete_missing_job(session):
    repo = GenerationJobRepository(session)

    assert await repo.update_job(uuid4(), retry_count=1) is False
    assert await repo.delete_job(uuid4()) is False


@pytest.mark.asyncio
async def test_fetch_due_jobs_orders_and_limits(session, make_blueprint, generation_request):
    repo = GenerationJobRepository(session)
    now = utcnow()
    offsets = {"late": -5, "earliest": -60, "future": 60, "middle": -30}
    job_ids = {}
    for label, offset in offsets.items():
        blueprint_id = await make_blueprint()
        job = await repo.create_job(
            blueprint_id, generation_request, next_retry_at=now + timedelta(seconds=offset)
        )
        await session.commit()
        job_ids[job.id] = label

    due = await repo.fetch_due_jobs(limit=10, now=now)
    assert [job_ids[job.id] for job in due] == ["earliest", "middle", "late"]

    limited = await repo.fetch_due_jobs(limit=2, now=now)
    assert [job_ids[job.id] for job in limited] == ["earliest", "middle"]


@pytest.mark.asyncio
async def test_claimed_jobs_are_hidden_from_other_sweeps(
    uow_factory, make_blueprint, generation_request
):
    now = utcnow()
    job_ids = []
    for offset in (-60, -30):
        blueprint_id = await make_blueprint()
        async with await uow_factory() as uow:
            job = await uow.generation_jobs.create_job(
                blueprint_id, generation_request, next_retry_at=now + timedelta(seconds=offset)
            )
            job_ids.append(job.id)

    async with await uow_factory() as uow:
        first = await uow.generation_jobs.claim_due_jobs(limit=1, lease_seconds=300, now=now)
    async with await uow_factory() as uow:
        second = await uow.generation_jobs.claim_due_jobs(limit=1, lease_seconds=300, now=now)
    async with await uow_factory() as uow:
        third = await uow.generation_jobs.claim_due_jobs(limit=1, lease_seconds=300, now=now)
        assert await uow.generation_jobs.fetch_due_jobs(now=now) == []
        leased = await uow.generation_jobs.get_by_id(job_ids[0])

    assert [job.id for job in first] == [job_ids[0]]
    assert [job.id for job in second] == [job_ids[1]]
    assert third == []
    assert leased.next_retry_at == now + timedelta(seconds=300)


@pytest.mark.asyncio
async def test_conditional_status_updates(session, make_blueprint):
    blueprint_id = await make_blueprint()
    repo = BlueprintRepository(session)

    assert await repo.mark_completed(blueprint_id, {"overview": {"summary": "first"}}) is True
    assert await repo.mark_completed(blueprint_id, {"overview": {"summary": "second"}}) is False
    assert await repo.mark_failed(blueprint_id) is False
    await session.commit()

    session.expire_all()
    blueprint = await repo.get_by_id(blueprint_id)
    assert blueprint.status == BlueprintStatus.COMPLETED
    assert blueprint.ai_output == {"overview": {"summary": "first"}}


@pytest.mark.asyncio
async def test_mark_failed_only_from_pending(session, make_blueprint):
    pending_id = await make_blueprint()
    failed_id = await make_blueprint(status=BlueprintStatus.FAILED)
    repo = BlueprintRepository(session)

    assert await repo.mark_failed(pending_id) is True
    assert await repo.mark_failed(failed_id) is False
    assert await repo.mark_failed(uuid4()) is False


@pytest.mark.asyncio
async def test_get_orphaned_pending(session, make_blueprint, generation_request):
    old = utcnow() - timedelta(minutes=30)
    orphan_id = await make_blueprint(created_at=old, updated_at=old)
    await make_blueprint()  # too recent
    await make_blueprint(status=BlueprintStatus.FAILED, created_at=old, updated_at=old)
    with_job_id = await make_blueprint(created_at=old, updated_at=old)

    jobs = GenerationJobRepository(session)
    await jobs.create_job(with_job_id, generation_request)
    await session.commit()

    orphans = await BlueprintRepository(session).get_orphaned_pending(stale_after_seconds=600)

    assert [b.id for b in orphans] == [orphan_id]


@pytest.mark.asyncio
async def test_add_blueprint_assigns_defaults(session):
    repo = BlueprintRepository(session)

    blueprint = await repo.add(
        Blueprint(user_id="user-9", content_source="pasted text", content_type="text")
    )

    assert blueprint.id is not None
    assert blueprint.status == BlueprintStatus.PENDING
    assert blueprint.request_data is None
    assert blueprint.generation_request is None


def test_timestamp_columns_are_naive():
    for column in (
        Blueprint.__table__.c.created_at,
        Blueprint.__table__.c.updated_at,
        GenerationJob.__table__.c.created_at,
        GenerationJob.__table__.c.next_retry_at,
    ):
        assert column.type.timezone is False


@pytest.mark.asyncio
async def test_naive_timestamps_round_trip(session, make_blueprint, generation_request):
    blueprint_id = await make_blueprint()
    due_at = utcnow() - timedelta(seconds=30)
    repo = GenerationJobRepository(session)

    job = await repo.create_job(blueprint_id, generation_request, next_retry_at=due_at)
    await session.commit()
    job_id = job.id
    session.expire_all()

    stored = await repo.get_by_id(job_id)
    assert stored.next_retry_at == due_at
    assert stored.next_retry_at.tzinfo is None
