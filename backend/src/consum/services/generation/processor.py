"""Generation attempt and retry scheduling for blueprint jobs.

One attempt = provider call + parse + a single store write. The attempt never
raises: every failure comes back as an AttemptFailure carrying its
classification, and the callers here decide what to persist:

- start_generation_cycle: first attempt for a new (or user-retried) blueprint.
  A retriable failure creates the job with retry_count=1.
- process_blueprint_job: a due job picked up by the sweep. Retriable failures
  update the same job row in place until the backoff schedule runs out.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal, Optional
from uuid import UUID

import httpx
import structlog

from consum.core.config import Settings
from consum.core.timezone import utcnow
from consum.models.generation_job import GenerationJob
from consum.models.generation_request import GenerationRequest
from consum.services.exceptions import AiRequestError, ProviderConfigurationError, ProviderMeta
from consum.services.generation.client import generate_blueprint_draft
from consum.services.generation.errors import (
    ErrorClassification,
    classify_error,
    extract_raw_snippet,
    get_error_code,
    get_status_code,
)
from consum.services.generation.parser import parse_blueprint_response
from consum.services.generation.providers import resolve_provider_name
from consum.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)

RETRY_DELAYS_SECONDS = (10, 30, 90, 270)
MAX_RETRIES = len(RETRY_DELAYS_SECONDS)


@dataclass(frozen=True)
class RetrySchedule:
    next_retry_count: int
    delay_seconds: int
    next_retry_at: datetime


def compute_next_retry_schedule(
    current_retry_count: int, now: datetime | None = None
) -> RetrySchedule | None:
    """Next slot in the fixed backoff schedule.

    Args:
        current_retry_count: Retries already scheduled for the job
        now: Reference time (default: current UTC time)

    Returns:
        The next schedule entry, or None once all MAX_RETRIES retries are used
    """
    next_retry_count = current_retry_count + 1
    if current_retry_count < 0 or next_retry_count > MAX_RETRIES:
        return None
    return _schedule_entry(next_retry_count, now)


def _schedule_entry(next_retry_count: int, now: datetime | None = None) -> RetrySchedule:
    delay_seconds = RETRY_DELAYS_SECONDS[next_retry_count - 1]
    return RetrySchedule(
        next_retry_count=next_retry_count,
        delay_seconds=delay_seconds,
        next_retry_at=(now or utcnow()) + timedelta(seconds=delay_seconds),
    )


@dataclass
class AttemptSuccess:
    payload: dict[str, Any]
    status: Literal["success"] = "success"


@dataclass
class AttemptFailure:
    classification: ErrorClassification
    message: str
    status_code: Optional[int] = None
    error_code: Optional[str] = None
    raw_snippet: Optional[str] = None
    provider_meta: Optional[ProviderMeta] = None
    error: Optional[BaseException] = None
    status: Literal["error"] = "error"

    @property
    def is_retriable(self) -> bool:
        return self.classification is ErrorClassification.RETRIABLE

    @property
    def last_error(self) -> str:
        """Stored diagnostic: message plus snippet when one exists."""
        if self.raw_snippet:
            return f"{self.message} | snippet={self.raw_snippet}"
        return self.message

    @property
    def error_type(self) -> str:
        if self.error_code:
            return self.error_code
        if self.status_code is not None:
            return str(self.status_code)
        return "unknown"


AttemptResult = AttemptSuccess | AttemptFailure


@dataclass
class ProcessResult:
    status: Literal["success", "retry_scheduled", "failed"]
    reason: Optional[Literal["max_retries", "non_retriable", "superseded"]] = None
    retry_count: Optional[int] = None
    next_retry_at: Optional[datetime] = None
    error_message: Optional[str] = None


def _describe_provider(request: GenerationRequest, settings: Settings) -> str:
    try:
        return resolve_provider_name(request.provider, settings.llm_provider)
    except ProviderConfigurationError:
        return (request.provider or settings.llm_provider or "unknown").strip().lower()


def _to_failure(error: BaseException) -> AttemptFailure:
    message = str(error) or type(error).__name__
    provider_meta = None
    if isinstance(error, AiRequestError):
        message = error.message
        provider_meta = error.details.provider_meta

    return AttemptFailure(
        classification=classify_error(error),
        message=message,
        status_code=get_status_code(error),
        error_code=get_error_code(error),
        raw_snippet=extract_raw_snippet(error),
        provider_meta=provider_meta,
        error=error,
    )


async def attempt_blueprint_generation(
    blueprint_id: UUID,
    request: GenerationRequest,
    uow_factory: UnitOfWorkFactory,
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> AttemptResult:
    """Run one generation attempt for a blueprint.

    On success the blueprint is marked completed with the parsed payload (the
    only write this function makes). On failure nothing is written.

    Args:
        blueprint_id: Target blueprint
        request: Stored generation payload
        uow_factory: Factory for database units of work
        settings: Application settings
        http_client: Optional shared HTTP client for the provider call

    Returns:
        AttemptSuccess or AttemptFailure; never raises
    """
    provider_name = _describe_provider(request, settings)
    start_time = time.time()

    logger.info(
        "blueprint.generation.started",
        blueprint_id=str(blueprint_id),
        provider=provider_name,
        metadata=request.metadata,
    )

    try:
        raw_text = await generate_blueprint_draft(request, settings, http_client=http_client)
        payload = parse_blueprint_response(raw_text).to_payload()

        async with await uow_factory() as uow:
            transitioned = await uow.blueprints.mark_completed(blueprint_id, payload)

    except Exception as e:
        failure = _to_failure(e)
        logger.error(
            "blueprint.generation.failed",
            blueprint_id=str(blueprint_id),
            provider=provider_name,
            classification=failure.classification.value,
            status_code=failure.status_code,
            error_code=failure.error_code,
            error_message=failure.message,
            snippet=failure.raw_snippet,
            provider_meta=failure.provider_meta.format() if failure.provider_meta else None,
        )
        return failure

    if not transitioned:
        logger.warning(
            "blueprint.generation.already_finalized",
            blueprint_id=str(blueprint_id),
            provider=provider_name,
        )

    logger.info(
        "blueprint.generation.succeeded",
        blueprint_id=str(blueprint_id),
        provider=provider_name,
        duration_seconds=time.time() - start_time,
    )
    return AttemptSuccess(payload=payload)


async def _fail_blueprint(
    blueprint_id: UUID,
    uow_factory: UnitOfWorkFactory,
    failure: AttemptFailure,
    retry_count: int,
    job_id: UUID | None = None,
) -> bool:
    """Mark the blueprint failed and drop its job in one transaction.

    When job_id is given the job is deleted first. If it is already gone, a
    user retry purged it and started a new chain that now owns the blueprint,
    so the blueprint is left untouched.

    Returns:
        True if the blueprint was failed, False if the job had vanished
    """
    async with await uow_factory() as uow:
        if job_id is not None and not await uow.generation_jobs.delete_job(job_id):
            logger.warning(
                "generation_job.vanished", job_id=str(job_id), blueprint_id=str(blueprint_id)
            )
            return False
        await uow.blueprints.mark_failed(blueprint_id)

    logger.error(
        "blueprint.failed_permanently",
        blueprint_id=str(blueprint_id),
        retry_count=retry_count,
        classification=failure.classification.value,
        error_type=failure.error_type,
        error_message=failure.last_error,
    )
    return True


async def process_blueprint_job(
    job: GenerationJob,
    uow_factory: UnitOfWorkFactory,
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> ProcessResult:
    """Run one attempt for a stored job and persist the outcome.

    Outcomes:
        - success: job deleted
        - retriable with schedule left: job updated in place (retry_count + 1,
          next_retry_at, last_error, error_type)
        - retriable with schedule exhausted: blueprint failed, job deleted
          (reason "max_retries")
        - non-retriable: blueprint failed, job deleted regardless of
          retry_count (reason "non_retriable")

    A failing outcome whose job was purged mid-attempt leaves the blueprint
    alone (reason "superseded"): deleting the job row cancels its chain.

    Args:
        job: Due job (may be detached from its session)
        uow_factory: Factory for database units of work
        settings: Application settings
        http_client: Optional shared HTTP client for the provider call

    Returns:
        ProcessResult describing the outcome
    """
    job_id = job.id
    blueprint_id = job.blueprint_id
    retry_count = job.retry_count

    logger.info(
        "generation_job.processing",
        job_id=str(job_id),
        blueprint_id=str(blueprint_id),
        retry_count=retry_count,
    )

    attempt = await attempt_blueprint_generation(
        blueprint_id, job.request, uow_factory, settings, http_client=http_client
    )

    if isinstance(attempt, AttemptSuccess):
        async with await uow_factory() as uow:
            await uow.generation_jobs.delete_job(job_id)
        logger.info("generation_job.completed", job_id=str(job_id), blueprint_id=str(blueprint_id))
        return ProcessResult(status="success", retry_count=retry_count)

    if not attempt.is_retriable:
        failed = await _fail_blueprint(
            blueprint_id, uow_factory, attempt, retry_count, job_id=job_id
        )
        return ProcessResult(
            status="failed",
            reason="non_retriable" if failed else "superseded",
            retry_count=retry_count,
            error_message=attempt.message,
        )

    schedule = compute_next_retry_schedule(retry_count)
    if schedule is None:
        failed = await _fail_blueprint(
            blueprint_id, uow_factory, attempt, retry_count, job_id=job_id
        )
        return ProcessResult(
            status="failed",
            reason="max_retries" if failed else "superseded",
            retry_count=retry_count,
            error_message=attempt.message,
        )

    async with await uow_factory() as uow:
        updated = await uow.generation_jobs.update_job(
            job_id,
            retry_count=schedule.next_retry_count,
            next_retry_at=schedule.next_retry_at,
            last_error=attempt.last_error,
            error_type=attempt.error_type,
        )

    if not updated:
        # Job was purged while the attempt ran (user retry); its replacement owns the blueprint.
        logger.warning(
            "generation_job.vanished", job_id=str(job_id), blueprint_id=str(blueprint_id)
        )

    logger.info(
        "generation_job.retry_scheduled",
        job_id=str(job_id),
        blueprint_id=str(blueprint_id),
        retry_count=schedule.next_retry_count,
        delay_seconds=schedule.delay_seconds,
        error_type=attempt.error_type,
    )
    return ProcessResult(
        status="retry_scheduled",
        retry_count=schedule.next_retry_count,
        next_retry_at=schedule.next_retry_at,
        error_message=attempt.message,
    )


async def start_generation_cycle(
    blueprint_id: UUID,
    request: GenerationRequest,
    uow_factory: UnitOfWorkFactory,
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> ProcessResult:
    """Initial attempt for a blueprint, creating a retry job if needed.

    Stale jobs for the blueprint are purged first so an earlier chain cannot
    race the new one.

    Returns:
        ProcessResult: success, retry_scheduled (job created with
        retry_count=1) or failed (non_retriable)
    """
    async with await uow_factory() as uow:
        purged = await uow.generation_jobs.delete_jobs_for_blueprint(blueprint_id)
    if purged:
        logger.info("generation_job.purged", blueprint_id=str(blueprint_id), count=purged)

    attempt = await attempt_blueprint_generation(
        blueprint_id, request, uow_factory, settings, http_client=http_client
    )

    if isinstance(attempt, AttemptSuccess):
        return ProcessResult(status="success", retry_count=0)

    if not attempt.is_retriable:
        await _fail_blueprint(blueprint_id, uow_factory, attempt, retry_count=0)
        return ProcessResult(
            status="failed", reason="non_retriable", retry_count=0, error_message=attempt.message
        )

    schedule = _schedule_entry(1)

    async with await uow_factory() as uow:
        job = await uow.generation_jobs.create_job(
            blueprint_id,
            request,
            retry_count=schedule.next_retry_count,
            next_retry_at=schedule.next_retry_at,
            last_error=attempt.last_error,
            error_type=attempt.error_type,
        )
        job_id = job.id

    logger.info(
        "generation_job.created",
        job_id=str(job_id),
        blueprint_id=str(blueprint_id),
        retry_count=schedule.next_retry_count,
        delay_seconds=schedule.delay_seconds,
        error_type=attempt.error_type,
    )
    return ProcessResult(
        status="retry_scheduled",
        retry_count=schedule.next_retry_count,
        next_retry_at=schedule.next_retry_at,
        error_message=attempt.message,
    )
