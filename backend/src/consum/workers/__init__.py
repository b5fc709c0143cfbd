"""Background workers for async processing tasks."""

from consum.workers.dispatcher import GenerationDispatcher
from consum.workers.retry_worker import (
    process_due_jobs,
    recover_orphaned_blueprints,
    run_retry_worker,
)
from consum.workers.supervisor import WorkerSupervisor

__all__ = [
    "GenerationDispatcher",
    "process_due_jobs",
    "recover_orphaned_blueprints",
    "run_retry_worker",
    "WorkerSupervisor",
]
