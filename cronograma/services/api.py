"""HTTP and WebSocket endpoints over the publish pipeline.

Read endpoints for the published schedule are public. Everything under
/draft, plus /publish, needs the admin bearer token.
"""
import asyncio
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, WebSocket, status
from loguru import logger

from ..schedule.errors import NotFoundError, ValidationError
from ..schedule.permissions import Permission, PermissionChecker, TokenPermissions, require_permission
from ..schedule.service.publish import PublishPipeline
from ..schedule.store import ScheduleStore
from ..schedule.types import FilterState, Slot, ViewMode, Window
from ..schedule import window as calendar
from .schemas import (
    ConflictCheck,
    EventCopy,
    EventCreate,
    EventMove,
    EventUpdate,
    InstructorIn,
    InstructorPatch,
    NavigateIn,
    TitleIn,
    ViewModeIn,
    WindowIn,
)

logger = logger.bind(module="services.api")
router = APIRouter()

STREAM_QUEUE_SIZE = 8

MAINTENANCE_ACTIONS = (
    "migrate-day-keys",
    "cleanup-legacy-keys",
    "remove-duplicates",
    "fix-incomplete",
    "clear-events",
)


# ============== Dependencies ==============

def get_pipeline(request: Request) -> PublishPipeline:
    return request.app.state.pipeline


def get_store(request: Request) -> ScheduleStore:
    return request.app.state.pipeline.store


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_permissions(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> PermissionChecker:
    return TokenPermissions(_bearer(authorization), request.app.state.settings.admin_token)


def _requires(permission: Permission):
    def dependency(checker: PermissionChecker = Depends(get_permissions)) -> PermissionChecker:
        require_permission(checker, permission)
        return checker
    return dependency


def _view_window(start_date: Optional[str], end_date: Optional[str]) -> Optional[Window]:
    if not (start_date and end_date):
        return None
    view_window = Window(start_date=start_date, end_date=end_date)
    try:
        inverted = view_window.start > view_window.end
    except ValueError as e:
        raise ValidationError(f"Invalid window date: {e}", field="start_date") from e
    if inverted:
        raise ValidationError("Window start must not be after its end", field="start_date")
    return view_window


def _schedule_payload(store: ScheduleStore, slot: Slot) -> dict:
    snapshot = store.snapshot(slot)
    data = snapshot.to_dict()
    data["windowKey"] = store.current_window_key(slot)
    data["windowTitle"] = store.window_title(slot=slot)
    return data


# ============== Public Reads ==============

@router.get("/health")
async def health(store: ScheduleStore = Depends(get_store)):
    return {"status": "ok", "unpublished_changes": store.has_unpublished_changes}


@router.get("/schedule/published")
async def published_schedule(store: ScheduleStore = Depends(get_store)):
    """Full published snapshot with the resolved window title."""
    return _schedule_payload(store, Slot.PUBLISHED)


@router.get("/schedule/published/view")
async def published_view(
    instructors: List[str] = Query(default=[]),
    regionals: List[str] = Query(default=[]),
    modalities: List[str] = Query(default=[]),
    programs: List[str] = Query(default=[]),
    modules: List[str] = Query(default=[]),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    view_mode: Optional[ViewMode] = None,
    store: ScheduleStore = Depends(get_store),
):
    """Rows of the published schedule visible under the given facets."""
    filters = FilterState(
        instructors=instructors,
        regionals=regionals,
        modalities=modalities,
        programs=programs,
        modules=modules,
    )
    view_window = _view_window(start_date, end_date)
    rows = store.filtered_rows(filters, Slot.PUBLISHED, view_window, view_mode)
    config = store.published.config
    effective = view_window or config.current_window
    mode = view_mode or config.view_mode
    return {
        "window": effective.to_dict(),
        "viewMode": ViewMode(mode).value,
        "dates": calendar.window_dates(effective, mode),
        "filters": filters.to_dict(),
        "rows": [row.to_dict() for row in rows],
    }


@router.get("/schedule/facets")
async def facets(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    view_mode: Optional[ViewMode] = None,
    store: ScheduleStore = Depends(get_store),
):
    options = store.facets(Slot.PUBLISHED, _view_window(start_date, end_date), view_mode)
    return options.to_dict()


@router.get("/schedule/month-grid")
async def month_grid(year: int = Query(ge=1, le=9999), month: int = Query(ge=1, le=12)):
    return {
        "year": year,
        "month": month,
        "title": f"{calendar.MONTH_NAMES[month - 1].capitalize()} {year}",
        "days": [asdict(day) for day in calendar.month_grid(year, month)],
    }


# ============== Draft Reads ==============

@router.get("/schedule/draft", dependencies=[Depends(_requires(Permission.EDIT_EVENTS))])
async def draft_schedule(store: ScheduleStore = Depends(get_store)):
    data = _schedule_payload(store, Slot.DRAFT)
    data["unpublishedChanges"] = store.has_unpublished_changes
    return data


@router.get("/schedule/integrity", dependencies=[Depends(_requires(Permission.EDIT_EVENTS))])
async def integrity_report(store: ScheduleStore = Depends(get_store)):
    return {
        "draft": store.integrity_report(Slot.DRAFT),
        "published": store.integrity_report(Slot.PUBLISHED),
    }


# ============== Draft Events ==============

@router.post(
    "/draft/events",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(_requires(Permission.EDIT_EVENTS))],
)
async def create_event(body: EventCreate, store: ScheduleStore = Depends(get_store)):
    event = store.add_event(
        body.row_id, body.day_key, body.event.to_event(), check_conflicts=body.check_conflicts
    )
    return event.to_dict()


@router.put("/draft/events/{event_id}", dependencies=[Depends(_requires(Permission.EDIT_EVENTS))])
async def update_event(event_id: str, body: EventUpdate, store: ScheduleStore = Depends(get_store)):
    updated = store.update_event(
        body.row_id, body.day_key, body.event.to_event(event_id), check_conflicts=body.check_conflicts
    )
    if not updated:
        raise NotFoundError(f"Event {event_id} not found in {body.row_id}/{body.day_key}")
    return {"updated": True}


@router.delete("/draft/events/{event_id}", dependencies=[Depends(_requires(Permission.EDIT_EVENTS))])
async def delete_event(
    event_id: str,
    row_id: str,
    day_key: str,
    store: ScheduleStore = Depends(get_store),
):
    if not store.delete_event(row_id, day_key, event_id):
        raise NotFoundError(f"Event {event_id} not found in {row_id}/{day_key}")
    return {"deleted": True}


@router.post("/draft/events/{event_id}/move", dependencies=[Depends(_requires(Permission.EDIT_EVENTS))])
async def move_event(event_id: str, body: EventMove, store: ScheduleStore = Depends(get_store)):
    moved = store.move_event(event_id, body.from_row, body.from_day, body.to_row, body.to_day)
    if not moved:
        raise NotFoundError(f"Event {event_id} not found in {body.from_row}/{body.from_day}")
    return {"moved": True}


@router.post(
    "/draft/events/{event_id}/copy",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(_requires(Permission.EDIT_EVENTS))],
)
async def copy_event(event_id: str, body: EventCopy, store: ScheduleStore = Depends(get_store)):
    copied = store.copy_event(
        event_id,
        body.from_row,
        body.from_day,
        body.to_row or body.from_row,
        body.to_day or body.from_day,
    )
    if copied is None:
        raise NotFoundError(f"Event {event_id} not found in {body.from_row}/{body.from_day}")
    return copied.to_dict()


@router.post("/draft/conflicts", dependencies=[Depends(_requires(Permission.EDIT_EVENTS))])
async def check_conflict(body: ConflictCheck, store: ScheduleStore = Depends(get_store)):
    result = store.check_time_conflict(
        body.row_id, body.day_key, body.start_time, body.end_time, body.exclude_event_id
    )
    return result.to_dict()


# ============== Draft Instructors ==============

@router.post(
    "/draft/instructors",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(_requires(Permission.MANAGE_INSTRUCTORS))],
)
async def create_instructor(body: InstructorIn, store: ScheduleStore = Depends(get_store)):
    return store.add_instructor(body.name, body.city, body.regional).to_dict()


@router.patch(
    "/draft/instructors/{instructor_id}",
    dependencies=[Depends(_requires(Permission.MANAGE_INSTRUCTORS))],
)
async def update_instructor(
    instructor_id: str,
    body: InstructorPatch,
    store: ScheduleStore = Depends(get_store),
):
    if not store.update_instructor(instructor_id, body.name, body.city, body.regional):
        raise NotFoundError(f"Instructor {instructor_id} not found")
    return store.draft.find_instructor(instructor_id).to_dict()


@router.delete(
    "/draft/instructors/{instructor_id}",
    dependencies=[Depends(_requires(Permission.MANAGE_INSTRUCTORS))],
)
async def delete_instructor(instructor_id: str, store: ScheduleStore = Depends(get_store)):
    if not store.delete_instructor(instructor_id):
        raise NotFoundError(f"Instructor {instructor_id} not found")
    return {"deleted": True}


# ============== Draft Config ==============

@router.put("/draft/config/title", dependencies=[Depends(_requires(Permission.EDIT_CONFIG))])
async def update_title(body: TitleIn, store: ScheduleStore = Depends(get_store)):
    if body.scope == "schedule":
        store.update_title(body.title)
        return {"title": store.draft.config.title}
    key = store.update_window_title(body.title, body.window_key)
    return {"windowKey": key, "title": store.window_title(key)}


@router.put("/draft/config/window", dependencies=[Depends(_requires(Permission.EDIT_CONFIG))])
async def update_window(body: WindowIn, store: ScheduleStore = Depends(get_store)):
    return store.update_window(body.start_date, body.end_date).to_dict()


@router.put("/draft/config/view-mode", dependencies=[Depends(_requires(Permission.EDIT_CONFIG))])
async def update_view_mode(body: ViewModeIn, store: ScheduleStore = Depends(get_store)):
    store.set_view_mode(body.view_mode)
    return {"viewMode": body.view_mode.value}


@router.post("/draft/navigate", dependencies=[Depends(_requires(Permission.EDIT_CONFIG))])
async def navigate(body: NavigateIn, store: ScheduleStore = Depends(get_store)):
    if body.unit == "today":
        new_window = store.reset_to_current_week()
    elif body.unit == "month":
        new_window = store.navigate_month(body.direction)
    else:
        new_window = store.navigate_week(body.direction)
    return {
        "window": new_window.to_dict(),
        "windowKey": store.current_window_key(),
        "title": store.window_title(),
    }


# ============== Maintenance ==============

@router.post("/draft/maintenance/{action}", dependencies=[Depends(_requires(Permission.EDIT_EVENTS))])
async def run_maintenance(
    action: str,
    force: bool = False,
    store: ScheduleStore = Depends(get_store),
):
    """Repair tools for the draft; changes still need save and publish."""
    if action == "migrate-day-keys":
        changed = store.migrate_day_keys()
    elif action == "cleanup-legacy-keys":
        changed = store.cleanup_legacy_keys(force=force)
    elif action == "remove-duplicates":
        changed = store.remove_duplicate_events()
    elif action == "fix-incomplete":
        changed = store.fix_incomplete_events()
    elif action == "clear-events":
        changed = store.clear_all_draft_events()
    else:
        raise NotFoundError(f"Unknown maintenance action: {action}")
    logger.info(f"Maintenance {action}: {changed} events changed")
    return {"action": action, "changed": changed}


# ============== Save & Publish ==============

@router.post("/draft/save", dependencies=[Depends(_requires(Permission.EDIT_EVENTS))])
async def save_draft(pipeline: PublishPipeline = Depends(get_pipeline)):
    stored = await pipeline.save_draft()
    return {"saved": True, "lastUpdated": stored.last_updated_ms}


@router.post("/publish")
async def publish(
    pipeline: PublishPipeline = Depends(get_pipeline),
    checker: PermissionChecker = Depends(get_permissions),
):
    published = await pipeline.publish(checker)
    return {
        "published": True,
        "lastUpdated": published.last_updated_ms,
        "unpublished_changes": pipeline.store.has_unpublished_changes,
    }


# ============== Live Updates ==============

def _enqueue_latest(queue: asyncio.Queue, snapshot) -> None:
    """Queue a snapshot for a client, dropping the oldest one if it lags behind."""
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(snapshot)


@router.websocket("/ws/{slot}")
async def snapshot_stream(websocket: WebSocket, slot: Slot, token: Optional[str] = None):
    """Send the slot's snapshot on connect and after every stored change."""
    app = websocket.app
    if slot is Slot.DRAFT:
        checker = TokenPermissions(token, app.state.settings.admin_token)
        if not checker.has_permission(Permission.EDIT_EVENTS.value):
            await websocket.close(code=1008)
            return

    pipeline: PublishPipeline = app.state.pipeline
    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue(maxsize=STREAM_QUEUE_SIZE)
    unsubscribe = pipeline.gateway.subscribe(slot, lambda snapshot: _enqueue_latest(queue, snapshot))

    async def push():
        while True:
            snapshot = await queue.get()
            await websocket.send_json(snapshot.to_dict())

    sender = None
    try:
        await websocket.send_json(pipeline.store.snapshot(slot).to_dict())
        sender = asyncio.create_task(push())
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        unsubscribe()
        if sender is not None:
            sender.cancel()
            (outcome,) = await asyncio.gather(sender, return_exceptions=True)
            if isinstance(outcome, Exception):
                logger.warning(f"Stream for slot {slot.value} stopped sending: {outcome!r}")
    logger.debug(f"Stream for slot {slot.value} closed")
