"""FastAPI application factory and process lifecycle."""

from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from consum.api.routes import blueprints
from consum.core.config import Settings, configure_logging
from consum.core.database import create_tables, setup_db_session
from consum.uow import create_uow_factory
from consum.workers.dispatcher import GenerationDispatcher
from consum.workers.retry_worker import run_retry_worker
from consum.workers.supervisor import WorkerSupervisor

logger = structlog.get_logger()

DRAIN_TIMEOUT_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire shared state on startup and wind it down on shutdown.

    Startup order: logging, database tables, UoW factory, the shared provider
    HTTP client, the dispatcher for initial attempts, then the retry worker.
    Shutdown stops the retry worker first so no new attempts start, then gives
    in-flight initial attempts DRAIN_TIMEOUT_SECONDS to finish.
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    await create_tables(session_factory)
    uow_factory = create_uow_factory(session_factory)

    http_client = httpx.AsyncClient(timeout=settings.llm_request_timeout_seconds)
    dispatcher = GenerationDispatcher(uow_factory, settings, http_client=http_client)
    retry_worker = WorkerSupervisor(
        "generation_retry",
        lambda: run_retry_worker(uow_factory, settings, http_client=http_client),
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.dispatcher = dispatcher
    app.state.retry_worker = retry_worker

    retry_worker.start()
    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        llm_provider=settings.llm_provider,
        retry_poll_interval=settings.retry_poll_interval_seconds,
    )

    yield

    logger.info("application.shutdown", in_flight_attempts=dispatcher.pending)
    await retry_worker.stop()
    await dispatcher.drain(timeout=DRAIN_TIMEOUT_SECONDS)
    await http_client.aclose()
    await session_factory.kw["bind"].dispose()


def create_app() -> FastAPI:
    """Build the API: CORS, blueprint routes and the health probe."""
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Consum Backend API",
        description="AI habit blueprint generation",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(blueprints.router)
    app.add_api_route("/health", health_check, methods=["GET"])

    return app


async def health_check(request: Request, response: Response) -> dict:
    """Database connectivity plus background generation state.

    Returns 503 only when the database is unreachable; a restarting retry
    worker is reported but does not fail the probe.
    """
    state = request.app.state
    report: dict = {"status": "healthy"}

    dispatcher = getattr(state, "dispatcher", None)
    if dispatcher is not None:
        report["in_flight_attempts"] = dispatcher.pending
    retry_worker = getattr(state, "retry_worker", None)
    if retry_worker is not None:
        report["retry_worker"] = {
            "running": retry_worker.running,
            "restarts": retry_worker.restarts,
        }

    try:
        async with state.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health_check.failed", error=str(e), error_type=type(e).__name__)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        report["status"] = "unhealthy"
        report["error"] = {"type": type(e).__name__, "message": str(e)}

    return report


# Create app instance for uvicorn
app = create_app()
