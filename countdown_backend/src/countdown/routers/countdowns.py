from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from ..engine import CountdownEngine
from ..models import CountdownEntity
from ..schemas import (
    BulkDelete,
    BulkDeleteResult,
    CountdownCreate,
    CountdownOut,
    CountdownPage,
    CountdownUpdate,
    StatisticsOut,
)

router = APIRouter(
    prefix="/api/v1/countdowns",
    tags=["countdowns"],
)

_NOT_FOUND = "Countdown not found"


def get_engine(request: Request) -> CountdownEngine:
    """
    Dependency returning the engine created by the application lifespan.
    """
    return request.app.state.engine


def _require(engine: CountdownEngine, countdown_id: UUID) -> CountdownEntity:
    countdown = engine.get(countdown_id)
    if countdown is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return countdown


def _replace(engine: CountdownEngine, countdown: CountdownEntity) -> CountdownOut:
    updated = engine.update(countdown)
    if updated is None:
        # Deleted between read and write
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return CountdownOut.from_entity(updated, engine.now())


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=CountdownOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Countdown",
    description="Create a countdown. It starts live updates immediately.",
    responses={
        201: {"description": "Countdown created successfully"},
        422: {"description": "Validation error"},
    },
)
def create_countdown(payload: CountdownCreate, engine: CountdownEngine = Depends(get_engine)) -> CountdownOut:
    created = engine.add(payload.name, payload.target_date)
    return CountdownOut.from_entity(created, engine.now())


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=CountdownPage,
    summary="List Countdowns",
    description=(
        "List countdowns in creation order.\n\n"
        "Query parameters:\n"
        "- limit: max number of items to return (0..1000)\n"
        "- offset: number of items to skip (>=0)\n"
        "- active: filter by live-update status\n"
        "- expired: filter by whether the target instant has passed"
    ),
)
def list_countdowns(
    limit: int = Query(50, ge=0, le=1000, description="Maximum number of items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    active: Optional[bool] = Query(None, description="Filter by live-update status"),
    expired: Optional[bool] = Query(None, description="Filter by expiry"),
    engine: CountdownEngine = Depends(get_engine),
) -> CountdownPage:
    now = engine.now()
    items = engine.countdowns
    if active is not None:
        items = [c for c in items if c.is_active == active]
    if expired is not None:
        items = [c for c in items if c.has_expired(now) == expired]
    page = items[offset:offset + limit]
    return CountdownPage(
        items=[CountdownOut.from_entity(c, now) for c in page],
        total=len(items),
        limit=limit,
        offset=offset,
    )


# PUBLIC_INTERFACE
@router.get(
    "/stats",
    response_model=StatisticsOut,
    summary="Countdown Statistics",
    description="Total, active, expired and future countdown counts.",
)
def countdown_stats(engine: CountdownEngine = Depends(get_engine)) -> StatisticsOut:
    return StatisticsOut.from_stats(engine.statistics())


# PUBLIC_INTERFACE
@router.get(
    "/events",
    summary="Change Events",
    description=(
        "Server-sent events stream with one 'change' event per engine notification. "
        "Events are coalesced when the client falls behind. The stream ends after "
        "`limit` events when given, and when the engine shuts down."
    ),
    response_class=StreamingResponse,
)
async def stream_events(
    limit: Optional[int] = Query(None, ge=1, description="Close the stream after this many events"),
    engine: CountdownEngine = Depends(get_engine),
) -> StreamingResponse:
    loop = asyncio.get_running_loop()
    pending: asyncio.Queue = asyncio.Queue(maxsize=1)
    closing = False

    def _signal() -> None:
        if pending.empty():
            pending.put_nowait(None)

    def _close() -> None:
        nonlocal closing
        closing = True
        _signal()

    # Mutations arrive from worker threads, ticks from the event loop
    unsubscribe = engine.subscribe(lambda: loop.call_soon_threadsafe(_signal))
    unregister = engine.on_close(lambda: loop.call_soon_threadsafe(_close))

    async def event_source() -> AsyncIterator[str]:
        sent = 0
        try:
            while limit is None or sent < limit:
                await pending.get()
                if closing:
                    break
                yield "event: change\ndata: changed\n\n"
                sent += 1
        finally:
            unsubscribe()
            unregister()

    return StreamingResponse(event_source(), media_type="text/event-stream")


# PUBLIC_INTERFACE
@router.post(
    "/bulk-delete",
    response_model=BulkDeleteResult,
    summary="Delete Countdowns",
    description="Delete several countdowns at once. Unknown ids are ignored.",
)
def bulk_delete(payload: BulkDelete, engine: CountdownEngine = Depends(get_engine)) -> BulkDeleteResult:
    return BulkDeleteResult(deleted=engine.delete_many(payload.ids))


# PUBLIC_INTERFACE
@router.post(
    "/stop-all",
    response_model=StatisticsOut,
    summary="Stop All Countdowns",
    description="Stop live updates for every countdown and return the resulting statistics.",
)
def stop_all(engine: CountdownEngine = Depends(get_engine)) -> StatisticsOut:
    engine.stop_all()
    return StatisticsOut.from_stats(engine.statistics())


# PUBLIC_INTERFACE
@router.get(
    "/{countdown_id}",
    response_model=CountdownOut,
    summary="Get Countdown",
    responses={
        200: {"description": "Countdown found"},
        404: {"description": "Countdown not found"},
    },
)
def get_countdown(countdown_id: UUID, engine: CountdownEngine = Depends(get_engine)) -> CountdownOut:
    return CountdownOut.from_entity(_require(engine, countdown_id), engine.now())


# PUBLIC_INTERFACE
@router.put(
    "/{countdown_id}",
    response_model=CountdownOut,
    summary="Replace Countdown",
    description="Replace the name and target date of a countdown. Its live-update state is kept.",
    responses={
        200: {"description": "Countdown updated"},
        404: {"description": "Countdown not found"},
    },
)
def put_countdown(
    countdown_id: UUID, payload: CountdownCreate, engine: CountdownEngine = Depends(get_engine)
) -> CountdownOut:
    countdown = _require(engine, countdown_id)
    countdown.name = payload.name
    countdown.target_date = payload.target_date
    return _replace(engine, countdown)


# PUBLIC_INTERFACE
@router.patch(
    "/{countdown_id}",
    response_model=CountdownOut,
    summary="Update Countdown",
    description="Partially update the name and/or target date of a countdown.",
    responses={
        200: {"description": "Countdown updated"},
        404: {"description": "Countdown not found"},
    },
)
def patch_countdown(
    countdown_id: UUID, payload: CountdownUpdate, engine: CountdownEngine = Depends(get_engine)
) -> CountdownOut:
    countdown = _require(engine, countdown_id)
    if payload.name is not None:
        countdown.name = payload.name
    if payload.target_date is not None:
        countdown.target_date = payload.target_date
    return _replace(engine, countdown)


# PUBLIC_INTERFACE
@router.delete(
    "/{countdown_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Countdown",
    responses={
        204: {"description": "Countdown deleted"},
        404: {"description": "Countdown not found"},
    },
)
def delete_countdown(countdown_id: UUID, engine: CountdownEngine = Depends(get_engine)) -> None:
    if not engine.delete(countdown_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return None


def _toggle(engine: CountdownEngine, countdown_id: UUID, running: bool) -> CountdownOut:
    ok = engine.start(countdown_id) if running else engine.stop(countdown_id)
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND)
    return CountdownOut.from_entity(_require(engine, countdown_id), engine.now())


# PUBLIC_INTERFACE
@router.post(
    "/{countdown_id}/start",
    response_model=CountdownOut,
    summary="Start Countdown",
    responses={404: {"description": "Countdown not found"}},
)
def start_countdown(countdown_id: UUID, engine: CountdownEngine = Depends(get_engine)) -> CountdownOut:
    return _toggle(engine, countdown_id, running=True)


# PUBLIC_INTERFACE
@router.post(
    "/{countdown_id}/stop",
    response_model=CountdownOut,
    summary="Stop Countdown",
    responses={404: {"description": "Countdown not found"}},
)
def stop_countdown(countdown_id: UUID, engine: CountdownEngine = Depends(get_engine)) -> CountdownOut:
    return _toggle(engine, countdown_id, running=False)
