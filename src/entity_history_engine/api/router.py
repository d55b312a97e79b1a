"""API router for entity-history-engine.

The sample Item resource is served over HistoricalCrudService and included in
main.py under the /api/v1 prefix. Routes translate HTTP into service calls
and nothing more. The acting principal comes from the X-Principal-Id header.

Endpoints:
- POST/GET    /items                                  — create and list items
- GET         /items/read-status                      — every item with read metadata
- GET         /items/most-recently-used               — items the caller viewed last
- POST        /items/read, /items/unread              — bulk read status
- GET/HEAD    /items/{id}                             — get item, existence check
- PUT/DELETE  /items/{id}                             — update, delete item
- GET         /items/{id}/history                     — change events, oldest first
- POST        /items/{id}/restore[/{changeset_id}]    — undo, or restore to a changeset
- POST        /items/{id}/copy[/{changeset_id}]       — copy live or historical state
- POST        /items/{id}/read, /items/{id}/unread    — read status of one item
- GET         /items/{id}/read-status                 — item with read metadata
- POST        /items/{id}/delta                       — snapshot or differential delta
"""

import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from entity_history_engine.adapters.repositories import (
    ChangesetRepository,
    ReadStatusRepository,
    SqlAlchemyEntityRepository,
    SqlAlchemyUnitOfWork,
)
from entity_history_engine.api.schemas import (
    DeltaRequest,
    ItemCreateRequest,
    ItemResponse,
    ItemUpdateRequest,
    ReadableItemResponse,
)
from entity_history_engine.auth import StaticPrincipalProvider, get_current_principal
from entity_history_engine.core.items import ITEM_DESCRIPTOR, ItemData
from entity_history_engine.core.locks import EntityLocks
from entity_history_engine.core.models import Item
from entity_history_engine.core.services import HistoricalCrudService
from entity_history_engine.database import get_db_session
from entity_history_engine.errors import (
    ConcurrentModificationError,
    HistoryEngineError,
    NotFoundError,
    NothingToRestoreError,
    ValidationError,
)
from entity_history_engine.history.events import ChangeEvent, DifferentialChangeset, SnapshotChangeset
from entity_history_engine.observability import get_logger
from entity_history_engine.settings import Settings

logger = get_logger(__name__)

router = APIRouter(prefix="/items", tags=["items"])

# Process-wide: serializes writers of the same entity across requests
_entity_locks = EntityLocks()


# ---------------------------------------------------------------------------
# Dependency factories: request session -> repositories -> service
# ---------------------------------------------------------------------------


async def get_item_service(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    principal: Annotated[StaticPrincipalProvider, Depends(get_current_principal)],
) -> AsyncGenerator[HistoricalCrudService[ItemData], None]:
    """Construct the Item HistoricalCrudService for one request.

    In deferred-commit mode the whole request is committed once the route
    returns without error.

    Args:
        request: The incoming request, for the application settings.
        session: Request-scoped DB session shared by every repository.
        principal: The acting principal.

    Yields:
        Fully wired HistoricalCrudService.
    """
    settings: Settings = request.app.state.settings
    service = HistoricalCrudService(
        descriptor=ITEM_DESCRIPTOR,
        entities=SqlAlchemyEntityRepository(session, Item, ITEM_DESCRIPTOR),
        changesets=ChangesetRepository(session),
        read_statuses=ReadStatusRepository(session),
        uow=SqlAlchemyUnitOfWork(session, _entity_locks),
        principals=principal,
        auto_commit=settings.auto_commit,
        max_retries=settings.max_commit_retries,
        mark_read_on_get=settings.mark_read_on_get,
        record_read_events=settings.record_read_events,
        most_recently_used_limit=settings.most_recently_used_limit,
    )
    yield service
    if not service.auto_commit:
        await service.commit()


ItemService = Annotated[HistoricalCrudService[ItemData], Depends(get_item_service)]


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _status_for(exc: HistoryEngineError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, (NothingToRestoreError, ConcurrentModificationError)):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def history_engine_error_handler(request: Request, exc: HistoryEngineError) -> JSONResponse:
    """Translate a HistoryEngineError into a JSON error response."""
    status_code = _status_for(exc)
    logger.info(
        "Request failed",
        path=request.url.path,
        error=type(exc).__name__,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    """Install the HistoryEngineError → HTTP status mapping on an application."""
    app.add_exception_handler(HistoryEngineError, history_engine_error_handler)


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=ItemResponse, status_code=201)
async def create_item(request: ItemCreateRequest, service: ItemService) -> ItemData:
    """Create an item and record its Create event.

    Args:
        request: Item creation request body.
        service: Injected item service.

    Returns:
        The created item.
    """
    logger.info("POST /items", item_id=str(request.id) if request.id else None)
    return await service.create(request.to_item())


@router.get("", response_model=list[ItemResponse])
async def list_items(service: ItemService) -> list[ItemData]:
    """List every live item."""
    return await service.get_all()


@router.get("/read-status", response_model=list[ReadableItemResponse])
async def list_read_status(service: ItemService) -> list[ReadableItemResponse]:
    """List every live item with the caller's read metadata."""
    statuses = await service.get_read_status()
    return [ReadableItemResponse.model_validate(s.model_dump()) for s in statuses]


@router.get("/most-recently-used", response_model=list[ItemResponse])
async def most_recently_used(
    service: ItemService,
    limit: int | None = Query(default=None, ge=1, le=100),
) -> list[ItemData]:
    """List the live items the caller viewed most recently, newest first.

    Args:
        service: Injected item service.
        limit: Maximum number of items; defaults to the configured limit.
    """
    return await service.most_recently_used(limit)


@router.post("/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_all_read(service: ItemService) -> None:
    """Mark every live item as viewed now by the caller."""
    await service.mark_all_as_read()


@router.post("/unread", status_code=status.HTTP_204_NO_CONTENT)
async def mark_all_unread(service: ItemService) -> None:
    """Forget every read status of the caller."""
    await service.mark_all_as_unread()


# ---------------------------------------------------------------------------
# Item endpoints
# ---------------------------------------------------------------------------


@router.get("/{item_id}", response_model=ItemResponse)
async def get_item(item_id: uuid.UUID, service: ItemService) -> ItemData:
    """Get a live item by ID.

    Args:
        item_id: The item UUID.
        service: Injected item service.

    Returns:
        The item.
    """
    return await service.get_by_id(item_id)


@router.head("/{item_id}")
async def head_item(item_id: uuid.UUID, service: ItemService) -> Response:
    """200 if a live item has this ID, 404 otherwise."""
    found = await service.exists(item_id)
    return Response(status_code=status.HTTP_200_OK if found else status.HTTP_404_NOT_FOUND)


@router.put("/{item_id}", response_model=ItemResponse)
async def update_item(item_id: uuid.UUID, request: ItemUpdateRequest, service: ItemService) -> ItemData:
    """Replace an item's fields and record an Update event.

    Args:
        item_id: The item UUID.
        request: New field values.
        service: Injected item service.

    Returns:
        The updated item.
    """
    logger.info("PUT /items/{item_id}", item_id=str(item_id))
    return await service.update(item_id, request.to_item(item_id))


@router.delete("/{item_id}", response_model=ItemResponse)
async def delete_item(item_id: uuid.UUID, service: ItemService) -> ItemData:
    """Delete an item. Its history is kept and it can be restored."""
    logger.info("DELETE /items/{item_id}", item_id=str(item_id))
    return await service.delete(item_id)


@router.get("/{item_id}/history", response_model=list[ChangeEvent])
async def get_item_history(item_id: uuid.UUID, service: ItemService) -> list[ChangeEvent]:
    """List every change event of an item, oldest first."""
    return await service.get_history(item_id)


@router.post("/{item_id}/restore", response_model=ItemResponse)
async def restore_item(item_id: uuid.UUID, service: ItemService) -> ItemData:
    """Undo the most recent change of an item, including a delete.

    Args:
        item_id: The item UUID.
        service: Injected item service.

    Returns:
        The restored item.
    """
    logger.info("POST /items/{item_id}/restore", item_id=str(item_id))
    return await service.restore(item_id)


@router.post("/{item_id}/restore/{changeset_id}", response_model=ItemResponse)
async def restore_item_from_changeset(
    item_id: uuid.UUID,
    changeset_id: uuid.UUID,
    service: ItemService,
) -> ItemData:
    """Restore an item to its state as of a specific change event.

    Args:
        item_id: The item UUID.
        changeset_id: A change event of this item.
        service: Injected item service.

    Returns:
        The restored item.
    """
    logger.info(
        "POST /items/{item_id}/restore/{changeset_id}",
        item_id=str(item_id),
        changeset_id=str(changeset_id),
    )
    return await service.restore_from_changeset(item_id, changeset_id)


@router.post("/{item_id}/copy", response_model=ItemResponse, status_code=201)
async def copy_item(item_id: uuid.UUID, service: ItemService) -> ItemData:
    """Create a new item with the live state of this one."""
    return await service.copy(item_id)


@router.post("/{item_id}/copy/{changeset_id}", response_model=ItemResponse, status_code=201)
async def copy_item_from_changeset(
    item_id: uuid.UUID,
    changeset_id: uuid.UUID,
    service: ItemService,
) -> ItemData:
    """Create a new item with this item's state as of a specific change event."""
    return await service.copy_from_changeset(item_id, changeset_id)


@router.post("/{item_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_item_read(item_id: uuid.UUID, service: ItemService) -> None:
    await service.mark_one_as_read(item_id)


@router.post("/{item_id}/unread", status_code=status.HTTP_204_NO_CONTENT)
async def mark_item_unread(item_id: uuid.UUID, service: ItemService) -> None:
    await service.mark_one_as_unread(item_id)


@router.get("/{item_id}/read-status", response_model=ReadableItemResponse)
async def get_item_read_status(item_id: uuid.UUID, service: ItemService) -> ReadableItemResponse:
    """Get an item with the caller's read metadata."""
    readable = await service.get_read_status_by_id(item_id)
    return ReadableItemResponse.model_validate(readable.model_dump())


@router.post("/{item_id}/delta", response_model=SnapshotChangeset | DifferentialChangeset)
async def get_item_delta(
    item_id: uuid.UUID,
    request: DeltaRequest,
    service: ItemService,
) -> SnapshotChangeset | DifferentialChangeset:
    """What changed on an item since the caller last viewed it, or in a given range.

    Args:
        item_id: The item UUID.
        request: Optional bounds and the response mode.
        service: Injected item service.

    Returns:
        A Snapshot changeset (state as of `to`, plus changed field names) or a
        Differential changeset (the raw events in (`from`, `to`]).
    """
    return await service.delta(item_id, from_ts=request.from_ts, to_ts=request.to_ts, mode=request.mode)
