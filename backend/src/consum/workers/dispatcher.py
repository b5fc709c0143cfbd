"""Detached execution of initial generation attempts.

The HTTP handler acknowledges a new blueprint immediately and hands the first
attempt to the dispatcher, which runs it as a background asyncio task.

Delivery is at-most-once within the process: a task lost to a crash or
restart leaves its blueprint pending with no job, which the retry worker's
orphan recovery re-enqueues after ORPHAN_STALE_AFTER_SECONDS.
"""

import asyncio
from uuid import UUID

import httpx
import structlog

from consum.core.config import Settings
from consum.models.generation_request import GenerationRequest
from consum.services.generation.processor import start_generation_cycle
from consum.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)


class GenerationDispatcher:
    """Runs start_generation_cycle for submitted blueprints in the background."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.uow_factory = uow_factory
        self.settings = settings
        self.http_client = http_client
        # Strong references so pending tasks are not garbage collected
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, blueprint_id: UUID, request: GenerationRequest) -> asyncio.Task:
        """Schedule the initial attempt and return without waiting for it."""
        task = asyncio.create_task(
            start_generation_cycle(
                blueprint_id,
                request,
                self.uow_factory,
                self.settings,
                http_client=self.http_client,
            ),
            name=f"generation:{blueprint_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("dispatcher.submitted", blueprint_id=str(blueprint_id), pending=self.pending)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("dispatcher.task_cancelled", task=task.get_name())
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "dispatcher.task_crashed",
                task=task.get_name(),
                error_type=type(error).__name__,
                error_message=str(error),
                exc_info=error,
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight attempts; cancel whatever is left after timeout."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("dispatcher.drain_cancelled", cancelled=len(still_running))
