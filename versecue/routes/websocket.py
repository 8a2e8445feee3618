"""
WebSocket handlers for the operator console and display surfaces.

/ws/session: operator console.
  Client → Server:
    Binary frames:  audio chunks for the song recording in progress
    Text frames:    JSON control messages
      {"type": "fragment", "data": {"text": "...", "is_final": true}}
      {"type": "approve" | "dismiss" | "display" | "remove", "data": {"id": "..."}}
      {"type": "display_next"}
      {"type": "start_recording" | "stop_recording" | "reset_recording"}
      {"type": "ping"}

  Server → Client:
    Text frames:    JSON (queue_update, transcript, recording, error, status)

/ws/display: passive display surface. Receives one DisplayPayload per push.
"""

import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from versecue.models.schemas import (
    QueueItem,
    QueueStats,
    RecordingState,
    WSControlMessage,
    WSQueueUpdate,
    WSTranscriptUpdate,
)
from versecue.pipeline.review_queue import InvalidTransition, QueueItemNotFound
import versecue.routes._state as _state

logger = logging.getLogger("versecue.ws")

QUEUE_ACTIONS = ("approve", "dismiss", "display", "remove")

# Every connected operator console sees every queue change
_sessions: set["OperatorSession"] = set()


class OperatorSession:
    """State for one connected operator console.

    Lifecycle: created per /ws/session connection. Registered in _sessions
    for broadcasts; removed in cleanup(). The queue, pipeline and song matcher
    are shared and outlive the session.
    """

    def __init__(self, websocket: WebSocket):
        self.ws = websocket
        self.id = id(websocket)
        self._tasks: set[asyncio.Task] = set()

    async def handle_control(self, raw: str):
        try:
            msg = WSControlMessage.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            await self._send({"type": "error", "message": "Malformed control message"})
            return

        t = msg.type
        if t == "fragment":
            text = str(msg.data.get("text", "")).strip()
            if text and _state._aggregator:
                # Detection can wait on the model; keep the socket responsive
                self._spawn(_state._aggregator.add_fragment(text, bool(msg.data.get("is_final", True))))

        elif t in QUEUE_ACTIONS:
            await self._queue_action(t, str(msg.data.get("id", "")))

        elif t == "display_next":
            if await self._queue_action("display_next") is None:
                await self._send({"type": "error", "message": "Nothing approved to display"})

        elif t == "start_recording":
            if _state._song_matcher:
                await _state._song_matcher.start_recording()

        elif t == "stop_recording":
            if _state._song_matcher:
                self._spawn(_state._song_matcher.stop_recording())

        elif t == "reset_recording":
            if _state._song_matcher:
                await _state._song_matcher.reset()

        elif t == "ping":
            await self._send({"type": "pong"})

        else:
            logger.debug("Session %s: unknown control type '%s'", self.id, t)
            await self._send({"type": "error", "message": f"Unknown message type: {t}"})

    def handle_audio(self, chunk: bytes):
        if _state._song_matcher:
            _state._song_matcher.add_audio(chunk)

    async def _queue_action(self, action: str, *args):
        """Run a queue transition. Queue errors go back to this console only."""
        if not _state._queue:
            await self._send({"type": "error", "message": "Queue not initialized"})
            return False
        try:
            return await getattr(_state._queue, action)(*args)
        except QueueItemNotFound as e:
            item_id = e.args[0] if e.args else ""
            await self._send({"type": "error", "message": f"Queue item not found: {item_id}"})
        except InvalidTransition as e:
            await self._send({"type": "error", "message": str(e)})
        return False

    def _spawn(self, coro):
        task = asyncio.create_task(self._guard(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, coro):
        try:
            await coro
        except Exception as e:
            logger.error("Session %s task failed: %s", self.id, e)
            await self._send({"type": "error", "message": str(e)})

    async def _send(self, data: dict | str):
        try:
            await self.ws.send_text(data if isinstance(data, str) else json.dumps(data, default=str))
        except Exception as e:
            logger.debug("WebSocket send failed (client may have disconnected): %s", e)

    async def cleanup(self):
        _sessions.discard(self)
        for task in list(self._tasks):
            task.cancel()


# --- Broadcasts (wired as callbacks in main.py) ---

async def _broadcast(message: str):
    for session in list(_sessions):
        await session._send(message)


async def broadcast_queue_update(item: QueueItem, stats: QueueStats):
    await _broadcast(WSQueueUpdate(item=item, stats=stats).model_dump_json())


async def broadcast_transcript(final_text: str, interim_text: str):
    await _broadcast(WSTranscriptUpdate(final_text=final_text, interim_text=interim_text).model_dump_json())


async def broadcast_recording_state(state: RecordingState):
    await _broadcast(json.dumps({"type": "recording", "state": state.model_dump(mode="json")}))


def session_count() -> int:
    return len(_sessions)


# --- Endpoints ---

async def session_endpoint(websocket: WebSocket):
    """Operator console handler. Any number of consoles may connect."""
    await websocket.accept()
    session = OperatorSession(websocket)
    _sessions.add(session)
    logger.info("Operator connected: %s (%d total)", session.id, len(_sessions))

    try:
        status = {"type": "status", "ready": _state._pipeline is not None}
        if _state._queue:
            status["queue"] = json.loads(json.dumps(_state._queue.snapshot(), default=_dump))
        await session._send(status)

        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
            if message.get("bytes"):
                session.handle_audio(message["bytes"])
            elif message.get("text"):
                await session.handle_control(message["text"])

    except WebSocketDisconnect:
        logger.info("Operator disconnected: %s", session.id)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
    finally:
        await session.cleanup()


async def display_endpoint(websocket: WebSocket):
    """Display surface handler. Receives pushes only; inbound text is ignored."""
    await websocket.accept()
    display = _state._display
    if display is None:
        await websocket.close(code=1013)
        return
    await display.subscribe(websocket)
    logger.info("Display connected (%d total)", display.subscriber_count)
    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("Display WebSocket error: %s", e)
    finally:
        display.unsubscribe(websocket)
        logger.info("Display disconnected (%d remaining)", display.subscriber_count)


def _dump(obj):
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    return str(obj)
