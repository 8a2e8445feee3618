"""Fan-out of display pushes to connected display surfaces."""

import asyncio
import logging

from fastapi import WebSocket

from versecue.models.schemas import DisplayPayload

logger = logging.getLogger("versecue.display")


class DisplayBroadcaster:
    """Holds /ws/display subscribers and the last payload pushed.

    publish() sends each payload once to every subscriber. A subscriber whose
    send fails is dropped; the push itself is not retried.
    """

    def __init__(self):
        self._subscribers: set[WebSocket] = set()
        self.current: DisplayPayload | None = None
        self.pushes = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, ws: WebSocket):
        self._subscribers.add(ws)
        # Late joiners see what is on screen now
        if self.current is not None:
            await ws.send_text(self.current.model_dump_json())

    def unsubscribe(self, ws: WebSocket):
        self._subscribers.discard(ws)

    async def publish(self, payload: DisplayPayload):
        self.current = payload
        self.pushes += 1
        if not self._subscribers:
            logger.debug("Display push with no subscribers: %s", payload.reference or payload.item_id)
            return
        message = payload.model_dump_json()
        subscribers = list(self._subscribers)
        results = await asyncio.gather(
            *(ws.send_text(message) for ws in subscribers), return_exceptions=True,
        )
        for ws, result in zip(subscribers, results):
            if isinstance(result, Exception):
                logger.warning("Dropping display subscriber after failed send: %s", result)
                self._subscribers.discard(ws)

    async def clear(self):
        self.current = None
        message = '{"type": "clear"}'
        for ws in list(self._subscribers):
            try:
                await ws.send_text(message)
            except Exception as e:
                logger.warning("Dropping display subscriber after failed clear: %s", e)
                self._subscribers.discard(ws)
