"""FastAPI dependencies for shared application state.

Everything here is created once in the app lifespan and stored on app.state.
"""

from fastapi import Request

from consum.uow import UnitOfWorkFactory
from consum.workers.dispatcher import GenerationDispatcher


def get_uow_factory(request: Request) -> UnitOfWorkFactory:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.blueprints.get_by_id(blueprint_id)
    """
    return request.app.state.uow_factory


def get_dispatcher(request: Request) -> GenerationDispatcher:
    """Get the background dispatcher for initial generation attempts."""
    return request.app.state.dispatcher
