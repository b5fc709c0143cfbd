"""GenerationJob repository for the Consum backend.

Job store for the generation pipeline. Every mutation is a single-row
insert/update/delete so the database provides the atomicity the scheduler relies on.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from consum.core.timezone import utcnow
from consum.models.generation_job import GenerationJob
from consum.models.generation_request import GenerationRequest

UPDATABLE_FIELDS = frozenset({"retry_count", "next_retry_at", "last_error", "error_type"})


class GenerationJobRepository:
    """Repository for GenerationJob entities.

    Enforces "at most one live job per blueprint": create_job purges stale jobs
    for the same blueprint before inserting, backed by a unique constraint.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job by UUID."""
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_by_blueprint(self, blueprint_id: UUID) -> GenerationJob | None:
        """Retrieve the live job for a blueprint, if any."""
        result = await self.session.execute(
            select(GenerationJob).where(
                GenerationJob.blueprint_id == blueprint_id  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def create_job(
        self,
        blueprint_id: UUID,
        request: GenerationRequest,
        retry_count: int = 0,
        next_retry_at: datetime | None = None,
        last_error: str | None = None,
        error_type: str | None = None,
    ) -> GenerationJob:
        """Persist a new job for a blueprint, replacing any stale one.

        Args:
            blueprint_id: Target blueprint
            request: Payload needed to regenerate
            retry_count: Initial retry counter (0 for a fresh job)
            next_retry_at: When the job becomes due (default: now)
            last_error: Diagnostic from the failure that created the job
            error_type: Error code/status from that failure

        Returns:
            Persisted job with generated ID
        """
        await self.delete_jobs_for_blueprint(blueprint_id)

        job = GenerationJob(
            blueprint_id=blueprint_id,
            request_data=request.to_json(),
            retry_count=retry_count,
            next_retry_at=next_retry_at or utcnow(),
            last_error=last_error,
            error_type=error_type,
        )
        self.session.add(job)
        await self.session.flush()
        return job

    async def update_job(self, job_id: UUID, **changes: Any) -> bool:
        """Update retry bookkeeping on a job in place.

        Args:
            job_id: Job to update
            **changes: Any of retry_count, next_retry_at, last_error, error_type

        Returns:
            True if a row was updated, False if the job no longer exists

        Raises:
            ValueError: If an unsupported field is passed
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update generation job fields: {sorted(unknown)}")
        if not changes:
            return False

        result = await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .values(**changes)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def delete_job(self, job_id: UUID) -> bool:
        """Delete a job by id. Deleting a missing job is a no-op.

        Returns:
            True if a row was deleted
        """
        result = await self.session.execute(
            delete(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def delete_jobs_for_blueprint(self, blueprint_id: UUID) -> int:
        """Delete every job for a blueprint.

        Returns:
            Number of deleted jobs (0 when none existed)
        """
        result = await self.session.execute(
            delete(GenerationJob)
            .where(GenerationJob.blueprint_id == blueprint_id)  # type: ignore[arg-type]
        )
        await self.session.flush()
        return result.rowcount or 0  # type: ignore[attr-defined]

    def _due_query(self, limit: int, now: datetime):
        return (
            select(GenerationJob)
            .where(GenerationJob.next_retry_at <= now)  # type: ignore[arg-type]
            .order_by(GenerationJob.next_retry_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )

    async def fetch_due_jobs(
        self, limit: int = 10, now: datetime | None = None
    ) -> list[GenerationJob]:
        """Retrieve jobs that are due for another attempt, without claiming them.

        Query explanation:
        - WHERE next_retry_at <= now: Only due jobs
        - ORDER BY next_retry_at ASC: Earliest due first
        - LIMIT: Batch size

        Args:
            limit: Maximum number of jobs to retrieve
            now: Reference time (default: current UTC time)

        Returns:
            Due jobs ordered by next_retry_at
        """
        result = await self.session.execute(self._due_query(limit, now or utcnow()))
        return list(result.scalars().all())

    async def claim_due_jobs(
        self, limit: int = 10, lease_seconds: int = 300, now: datetime | None = None
    ) -> list[GenerationJob]:
        """Retrieve due jobs and lease them to the caller.

        The rows are locked with FOR UPDATE SKIP LOCKED and their next_retry_at
        is pushed lease_seconds ahead in the same transaction, so once the
        caller commits, other sweeps no longer see them as due. Processing a
        job overwrites the lease (reschedule) or deletes the row; a job whose
        processing crashed becomes due again when the lease runs out.

        Args:
            limit: Maximum number of jobs to claim
            lease_seconds: How long claimed jobs stay invisible to other sweeps
            now: Reference time (default: current UTC time)

        Returns:
            Claimed jobs ordered by their original next_retry_at
        """
        cutoff = now or utcnow()
        result = await self.session.execute(
            self._due_query(limit, cutoff).with_for_update(skip_locked=True)
        )
        jobs = list(result.scalars().all())
        if not jobs:
            return jobs

        await self.session.execute(
            update(GenerationJob)
            .where(GenerationJob.id.in_([job.id for job in jobs]))  # type: ignore[attr-defined]
            .values(next_retry_at=cutoff + timedelta(seconds=lease_seconds))
        )
        return jobs
