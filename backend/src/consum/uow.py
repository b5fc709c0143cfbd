"""Transaction boundary shared by the blueprint and job stores.

Everything done through one UnitOfWork commits together: a blueprint status
change and the matching job deletion are never observed separately.
"""

from typing import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consum.repositories.blueprint import BlueprintRepository
from consum.repositories.generation_job import GenerationJobRepository

logger = structlog.get_logger()


class UnitOfWork:
    """One session, both repositories, commit on exit.

    Example:
        async with await uow_factory() as uow:
            await uow.generation_jobs.delete_jobs_for_blueprint(blueprint_id)
            await uow.blueprints.mark_failed(blueprint_id)
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.blueprints = BlueprintRepository(session)
        self.generation_jobs = GenerationJobRepository(session)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit on clean exit, roll back on exception, always close the session.

        The exception, if any, always propagates to the caller.
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


UnitOfWorkFactory = Callable[[], Awaitable[UnitOfWork]]


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]) -> UnitOfWorkFactory:
    """Bind a session factory so callers can open a fresh UnitOfWork per operation.

    Workers and routes hold the returned callable, never a session, so each
    attempt or request gets its own short transaction.
    """

    async def _create_uow() -> UnitOfWork:
        return UnitOfWork(session_factory())

    return _create_uow
