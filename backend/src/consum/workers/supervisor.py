"""Keeps a long-running worker loop alive inside the API process."""

import asyncio
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

RESTART_DELAY_SECONDS = 1


class WorkerSupervisor:
    """Runs a worker coroutine and restarts it after crashes until stopped.

    Example:
        supervisor = WorkerSupervisor("generation_retry", lambda: run_retry_worker(...))
        supervisor.start()
        ...
        await supervisor.stop()
    """

    def __init__(
        self,
        name: str,
        coro_factory: Callable[[], Awaitable[None]],
        restart_delay: float = RESTART_DELAY_SECONDS,
    ):
        self.name = name
        self.coro_factory = coro_factory
        self.restart_delay = restart_delay
        self.restarts = 0
        self._task: asyncio.Task | None = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self._stopping = False
        self._spawn()

    def _spawn(self) -> None:
        self._task = asyncio.create_task(self._run_forever(), name=f"worker:{self.name}")

    async def _run_forever(self) -> None:
        while not self._stopping:
            try:
                await self.coro_factory()
                # Poll loops never return on their own
                logger.warning(
                    "worker.stopped_unexpectedly",
                    worker=self.name,
                    retry_in_seconds=self.restart_delay,
                )
            except asyncio.CancelledError:
                logger.info("worker.cancelled", worker=self.name)
                raise
            except Exception as e:
                logger.error(
                    "worker.crashed",
                    worker=self.name,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    retry_in_seconds=self.restart_delay,
                    exc_info=True,
                )

            await asyncio.sleep(self.restart_delay)
            if not self._stopping:
                self.restarts += 1
                logger.info("worker.restarting", worker=self.name, restarts=self.restarts)

    async def stop(self) -> None:
        """Cancel the worker and wait for it to unwind."""
        self._stopping = True
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        logger.info("worker.shutdown_complete", worker=self.name)
