"""Review queue routes: views, operator transitions, and runtime settings."""

import logging

from fastapi import APIRouter, HTTPException, Query

from versecue.models.schemas import QueueSettingsUpdate
from versecue.pipeline.review_queue import InvalidTransition, QueueItemNotFound
import versecue.routes._state as _state

logger = logging.getLogger("versecue.api.queue")

queue_router = APIRouter(prefix="/api/queue", tags=["queue"])


def _require_queue():
    if not _state._queue:
        raise HTTPException(503, "Queue not initialized")
    return _state._queue


async def _transition(action: str, *args):
    """Run one queue transition, mapping queue errors to HTTP status codes.

    404 when the id is not in the working set, 409 when the item's state
    does not allow the action.
    """
    queue = _require_queue()
    try:
        return await getattr(queue, action)(*args)
    except QueueItemNotFound:
        raise HTTPException(404, "Queue item not found")
    except InvalidTransition as e:
        raise HTTPException(409, str(e))


@queue_router.get("")
async def get_queue():
    """Return pending, approved and displayed items plus stats and settings."""
    return _require_queue().snapshot()


@queue_router.get("/stats")
async def queue_stats():
    """Return monotonic counters (detected, approved, displayed, dismissed)."""
    return _require_queue().stats


@queue_router.get("/history")
async def queue_history(limit: int = Query(default=100, ge=1, le=1000)):
    """Every item ever queued this session, newest first."""
    return list(reversed(_require_queue().history))[:limit]


@queue_router.get("/settings")
async def get_settings():
    return _require_queue().settings


@queue_router.put("/settings")
async def update_settings(req: QueueSettingsUpdate):
    """Update auto-approve and translation. Items already queued are unaffected."""
    queue = _require_queue()
    queue.configure(
        auto_approve=req.auto_approve,
        auto_approve_threshold=req.auto_approve_threshold,
        translation=req.translation,
    )
    return queue.settings


@queue_router.post("/display-next")
async def display_next():
    """Display the earliest approved item. Returns {item: null} when none is approved."""
    item = await _transition("display_next")
    return {"item": item}


@queue_router.get("/{item_id}")
async def get_item(item_id: str):
    try:
        return _require_queue().get(item_id)
    except QueueItemNotFound:
        raise HTTPException(404, "Queue item not found")


@queue_router.post("/{item_id}/approve")
async def approve_item(item_id: str):
    """pending → approved. 404 unknown id, 409 wrong state."""
    return await _transition("approve", item_id)


@queue_router.post("/{item_id}/dismiss")
async def dismiss_item(item_id: str):
    """pending | approved | displayed → dismissed."""
    return await _transition("dismiss", item_id)


@queue_router.post("/{item_id}/display")
async def display_item(item_id: str):
    """approved | displayed → displayed. Pushes one payload to display surfaces."""
    return await _transition("display", item_id)


@queue_router.delete("/{item_id}")
async def remove_item(item_id: str):
    """Delete an approved item from the working set. It stays in history."""
    item = await _transition("remove", item_id)
    return {"removed": True, "id": item.id}
