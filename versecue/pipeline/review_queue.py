"""Review queue: the single owner of candidate lifecycle state."""

import asyncio
import itertools
import logging
import uuid
from datetime import datetime, UTC
from typing import Awaitable, Callable, Optional

from versecue.models.schemas import (
    DetectionCandidate,
    DisplayPayload,
    QueueItem,
    QueueStats,
    ScriptureReference,
    SongMatch,
)

logger = logging.getLogger("versecue.queue")

AUTO_APPROVE_THRESHOLD = 0.95

# Allowed source states per transition
_TRANSITIONS = {
    "approve": ("pending",),
    "dismiss": ("pending", "approved", "displayed"),
    "display": ("approved", "displayed"),
    "remove": ("approved",),
}

TextResolver = Callable[[ScriptureReference, str], Awaitable[Optional[str]]]
DisplayPublisher = Callable[[DisplayPayload], Awaitable[None]]
ChangeCallback = Callable[[QueueItem, QueueStats], Awaitable[None]]


class QueueItemNotFound(KeyError):
    """No item with this id in the active working set."""


class InvalidTransition(ValueError):
    """The item's current state does not allow the requested transition."""

    def __init__(self, item_id: str, action: str, state: str):
        self.item_id = item_id
        self.action = action
        self.state = state
        super().__init__(f"Cannot {action} item {item_id} in state '{state}'")


class ReviewQueue:
    """Pending → approved → displayed, with dismiss and remove as exits.

    Lifecycle:
    - Every arrival creates a new item tagged with a monotonically increasing
      seq. With auto-approve on and confidence ≥ threshold it starts approved.
    - approve/dismiss/display/remove are the only ways item state changes.
      Transitions for one id are serialized by a per-id lock; different ids
      can transition concurrently.
    - remove() deletes an approved item from the working set. It stays in
      history. Dismissed items stay in the working set but are filtered out
      of the pending/approved views.

    Counters (detected/approved/displayed/dismissed) only ever go up, once per
    transition. Re-displaying an item refreshes displayed_at but does not count.

    Display side effect: each display() call pushes exactly one payload to the
    publisher. A failed push is logged and not retried.
    """

    def __init__(
        self,
        auto_approve: bool = False,
        auto_approve_threshold: float = AUTO_APPROVE_THRESHOLD,
        translation: str = "KJV",
        text_resolver: TextResolver | None = None,
        display_publisher: DisplayPublisher | None = None,
    ):
        self.auto_approve = auto_approve
        self.auto_approve_threshold = auto_approve_threshold
        self.translation = translation
        self._text_resolver = text_resolver
        self._display_publisher = display_publisher
        self._on_change: ChangeCallback | None = None

        self._items: dict[str, QueueItem] = {}
        self._history: list[QueueItem] = []
        self._locks: dict[str, asyncio.Lock] = {}
        self._seq = itertools.count(1)
        self._stats = QueueStats()

    def set_callbacks(self, on_change: ChangeCallback | None = None):
        self._on_change = on_change

    def set_display_publisher(self, publisher: DisplayPublisher | None):
        self._display_publisher = publisher

    def set_text_resolver(self, resolver: TextResolver | None):
        self._text_resolver = resolver

    def configure(
        self,
        auto_approve: bool | None = None,
        auto_approve_threshold: float | None = None,
        translation: str | None = None,
    ):
        """Update runtime settings. Existing items are not re-evaluated."""
        if auto_approve is not None:
            self.auto_approve = auto_approve
        if auto_approve_threshold is not None:
            self.auto_approve_threshold = auto_approve_threshold
        if translation:
            self.translation = translation.upper()
        logger.info(
            "Queue settings: auto_approve=%s threshold=%.2f translation=%s",
            self.auto_approve, self.auto_approve_threshold, self.translation,
        )

    @property
    def settings(self) -> dict:
        return {
            "auto_approve": self.auto_approve,
            "auto_approve_threshold": self.auto_approve_threshold,
            "translation": self.translation,
        }

    # --- Arrivals ---

    async def add_candidate(self, candidate: DetectionCandidate) -> QueueItem:
        return await self._add(QueueItem(
            id=self._new_id(),
            seq=next(self._seq),
            kind="scripture",
            candidate=candidate,
        ))

    async def add_song_match(self, match: SongMatch) -> QueueItem:
        return await self._add(QueueItem(
            id=self._new_id(),
            seq=next(self._seq),
            kind="song",
            song_match=match,
        ))

    async def _add(self, item: QueueItem) -> QueueItem:
        self._items[item.id] = item
        self._history.append(item)
        self._locks[item.id] = asyncio.Lock()
        self._stats.detected += 1

        if self.auto_approve and item.confidence >= self.auto_approve_threshold:
            item.state = "approved"
            item.approved_at = datetime.now(UTC)
            self._stats.approved += 1
            logger.info("Auto-approved %s (%.2f)", item.label, item.confidence)
        else:
            logger.info("Queued %s (%.2f) as pending", item.label, item.confidence)

        await self._notify(item)
        return item

    # --- Transitions ---

    async def approve(self, item_id: str) -> QueueItem:
        async with self._lock_for(item_id):
            item = self._require(item_id, "approve")
            item.state = "approved"
            item.approved_at = datetime.now(UTC)
            self._stats.approved += 1
        logger.info("Approved %s", item.label)
        await self._notify(item)
        return item

    async def dismiss(self, item_id: str) -> QueueItem:
        async with self._lock_for(item_id):
            item = self._require(item_id, "dismiss")
            item.state = "dismissed"
            item.dismissed_at = datetime.now(UTC)
            self._stats.dismissed += 1
        logger.info("Dismissed %s", item.label)
        await self._notify(item)
        return item

    async def remove(self, item_id: str) -> QueueItem:
        async with self._lock_for(item_id):
            item = self._require(item_id, "remove")
            del self._items[item_id]
        self._locks.pop(item_id, None)
        logger.info("Removed %s from the working set", item.label)
        await self._notify(item)
        return item

    async def display(self, item_id: str) -> QueueItem:
        """Mark as displayed and push exactly one payload to the display surface."""
        async with self._lock_for(item_id):
            item = self._require(item_id, "display")
            first_display = item.state != "displayed"
            item.state = "displayed"
            item.displayed_at = datetime.now(UTC)
            if first_display:
                self._stats.displayed += 1

            if item.candidate is not None:
                item.translation = item.translation or self.translation
                if item.resolved_text is None:
                    item.resolved_text = await self._resolve_text(item)

            await self._publish(item)

        await self._notify(item)
        return item

    async def display_next(self) -> QueueItem | None:
        """Display the earliest-arrived approved item, if any."""
        approved = self.approved()
        if not approved:
            return None
        return await self.display(approved[0].id)

    # --- Views ---

    def get(self, item_id: str) -> QueueItem:
        item = self._items.get(item_id)
        if item is None:
            raise QueueItemNotFound(item_id)
        return item

    def pending(self) -> list[QueueItem]:
        return self._by_state("pending")

    def approved(self) -> list[QueueItem]:
        """Approved items in arrival order, which is the "display next" order."""
        return self._by_state("approved")

    def displayed(self) -> list[QueueItem]:
        return self._by_state("displayed")

    def active(self) -> list[QueueItem]:
        return sorted(
            (i for i in self._items.values() if i.state != "dismissed"),
            key=lambda i: i.seq,
        )

    @property
    def history(self) -> list[QueueItem]:
        return list(self._history)

    @property
    def stats(self) -> QueueStats:
        return self._stats.model_copy()

    def snapshot(self) -> dict:
        return {
            "pending": self.pending(),
            "approved": self.approved(),
            "displayed": self.displayed(),
            "stats": self.stats,
            "settings": self.settings,
        }

    # --- Internals ---

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex[:12]

    def _by_state(self, state: str) -> list[QueueItem]:
        return sorted(
            (i for i in self._items.values() if i.state == state),
            key=lambda i: i.seq,
        )

    def _lock_for(self, item_id: str) -> asyncio.Lock:
        lock = self._locks.get(item_id)
        if lock is None:
            raise QueueItemNotFound(item_id)
        return lock

    def _require(self, item_id: str, action: str) -> QueueItem:
        """Fetch the item and check the transition is allowed. Call under its lock."""
        item = self._items.get(item_id)
        if item is None:
            raise QueueItemNotFound(item_id)
        if item.state not in _TRANSITIONS[action]:
            raise InvalidTransition(item_id, action, item.state)
        return item

    async def _resolve_text(self, item: QueueItem) -> str | None:
        if self._text_resolver is None:
            return None
        try:
            return await self._text_resolver(item.candidate.reference, item.translation)
        except Exception as e:
            logger.warning("Text lookup failed for %s: %s", item.label, e)
            return None

    async def _publish(self, item: QueueItem):
        if self._display_publisher is None:
            return
        if item.candidate is not None:
            payload = DisplayPayload(
                type="scripture",
                item_id=item.id,
                reference=item.candidate.reference.display,
                resolved_text=item.resolved_text,
                translation=item.translation,
                displayed_at=item.displayed_at,
            )
        else:
            payload = DisplayPayload(
                type="song",
                item_id=item.id,
                song=item.song_match.song,
                resolved_text=item.song_match.song.lyrics,
                displayed_at=item.displayed_at,
            )
        try:
            await self._display_publisher(payload)
        except Exception as e:
            logger.error("Display push failed for %s: %s", item.label, e)

    async def _notify(self, item: QueueItem):
        if self._on_change is None:
            return
        try:
            await self._on_change(item, self.stats)
        except Exception as e:
            logger.warning("Queue change callback failed: %s", e)
