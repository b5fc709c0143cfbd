"""Blueprint repository for the Consum backend.

Status writes are conditional on the blueprint still being pending, so a
duplicate completion from a concurrent attempt is a no-op instead of an overwrite.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from consum.core.timezone import utcnow
from consum.models.blueprint import Blueprint, BlueprintStatus
from consum.models.generation_job import GenerationJob


class BlueprintRepository:
    """Repository for Blueprint entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, blueprint: Blueprint) -> Blueprint:
        """Persist new blueprint to database.

        Args:
            blueprint: Blueprint entity to persist

        Returns:
            Persisted blueprint with generated ID
        """
        self.session.add(blueprint)
        await self.session.flush()
        return blueprint

    async def get_by_id(self, blueprint_id: UUID) -> Blueprint | None:
        """Retrieve blueprint by UUID.

        Args:
            blueprint_id: Blueprint's unique identifier

        Returns:
            Blueprint if found, None otherwise
        """
        result = await self.session.execute(
            select(Blueprint).where(Blueprint.id == blueprint_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def mark_completed(self, blueprint_id: UUID, payload: dict[str, Any]) -> bool:
        """Store generated output and mark blueprint completed.

        Args:
            blueprint_id: Target blueprint
            payload: Parsed blueprint output (JSON-serializable)

        Returns:
            True if the blueprint transitioned, False if it was no longer pending
        """
        result = await self.session.execute(
            update(Blueprint)
            .where(Blueprint.id == blueprint_id)  # type: ignore[arg-type]
            .where(Blueprint.status == BlueprintStatus.PENDING)  # type: ignore[arg-type]
            .values(status=BlueprintStatus.COMPLETED, ai_output=payload, updated_at=utcnow())
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def mark_failed(self, blueprint_id: UUID) -> bool:
        """Mark a pending blueprint as permanently failed.

        Returns:
            True if the blueprint transitioned, False if it was no longer pending
        """
        result = await self.session.execute(
            update(Blueprint)
            .where(Blueprint.id == blueprint_id)  # type: ignore[arg-type]
            .where(Blueprint.status == BlueprintStatus.PENDING)  # type: ignore[arg-type]
            .values(status=BlueprintStatus.FAILED, updated_at=utcnow())
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def get_orphaned_pending(
        self, stale_after_seconds: int, limit: int = 100, now: datetime | None = None
    ) -> list[Blueprint]:
        """Retrieve pending blueprints with no live job that have not changed in a while.

        These are blueprints whose detached initial attempt never reported back
        (e.g. the process died mid-flight).

        Args:
            stale_after_seconds: Minimum time since the last status change (creation or
                user retry) before a pending blueprint counts as orphaned
            limit: Maximum number of blueprints to return
            now: Reference time (default: current UTC time)

        Returns:
            Orphaned blueprints, least recently touched first
        """
        cutoff = (now or utcnow()) - timedelta(seconds=stale_after_seconds)
        has_job = exists().where(
            GenerationJob.blueprint_id == Blueprint.id  # type: ignore[arg-type]
        )
        result = await self.session.execute(
            select(Blueprint)
            .where(Blueprint.status == BlueprintStatus.PENDING)  # type: ignore[arg-type]
            .where(Blueprint.updated_at <= cutoff)  # type: ignore[arg-type]
            .where(~has_job)
            .order_by(Blueprint.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
