"""Worship song routes: press-to-identify recording, manual search, enqueue."""

import logging

from fastapi import APIRouter, HTTPException
from starlette.requests import Request

from versecue.models.schemas import EnqueueSongRequest, SongSearchRequest
import versecue.routes._state as _state

logger = logging.getLogger("versecue.api.worship")

worship_router = APIRouter(prefix="/api/worship", tags=["worship"])

# Upper bound on one raw audio body (snippets are ~10s of compressed audio)
MAX_AUDIO_BODY_BYTES = 10 * 1024 * 1024


def _require_matcher():
    if not _state._song_matcher:
        raise HTTPException(503, "Song matcher not initialized")
    return _state._song_matcher


async def _read_audio(request: Request) -> bytes:
    body = await request.body()
    if len(body) > MAX_AUDIO_BODY_BYTES:
        raise HTTPException(413, "Audio body too large")
    return body


@worship_router.get("/status")
async def recording_status():
    """Current recording state: status, elapsed, audio size, transcript, matches, error."""
    return _require_matcher().state


@worship_router.post("/record/start")
async def start_recording():
    """Begin a new identification. Any flow in progress is discarded."""
    return await _require_matcher().start_recording()


@worship_router.post("/record/audio")
async def add_audio(request: Request):
    """Append a raw audio chunk. Ignored (accepted: false) unless recording."""
    matcher = _require_matcher()
    accepted = matcher.add_audio(await _read_audio(request))
    return {"accepted": accepted, "audio_bytes": matcher.state.audio_bytes}


@worship_router.post("/record/stop")
async def stop_recording():
    """Stop and identify. Repeated calls return the same result."""
    matcher = _require_matcher()
    matches = await matcher.stop_recording()
    return {"matches": matches, "state": matcher.state}


@worship_router.post("/identify")
async def identify(request: Request):
    """Identify a complete snippet sent as the raw request body."""
    matcher = _require_matcher()
    matches = await matcher.identify(await _read_audio(request))
    return {"matches": matches, "state": matcher.state}


@worship_router.post("/reset")
async def reset():
    return await _require_matcher().reset()


@worship_router.post("/search")
async def search_songs(req: SongSearchRequest):
    """Typed lyric or title search across every strategy. Returns 400 for blank text."""
    if not req.text.strip():
        raise HTTPException(400, "Text is required")
    return {"matches": await _require_matcher().search_text(req.text)}


@worship_router.post("/enqueue")
async def enqueue_song(req: EnqueueSongRequest):
    """Queue a chosen match for operator review."""
    if not _state._queue:
        raise HTTPException(503, "Queue not initialized")
    item = await _state._queue.add_song_match(req.match)
    logger.info("Operator queued song %s", item.label)
    return item
