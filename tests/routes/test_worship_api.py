"""HTTP tests for the worship song routes."""

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI

from conftest import song_match
from versecue.pipeline.review_queue import ReviewQueue
from versecue.pipeline.song_matcher import SongMatchOrchestrator
from versecue.routes import api_worship
from versecue.routes.api_worship import worship_router
from versecue.services.song_library import SongLibrary
import versecue.routes._state as _state

AUDIO = b"\x1a\x45\xdf\xa3" * 1000


@pytest.fixture
async def matcher(app_config, db, sample_songs_json):
    library = SongLibrary("default")
    await library.load_from_json(sample_songs_json)
    lyric_search = AsyncMock()
    lyric_search.search_genius.return_value = []
    lyric_search.search_lrclib.return_value = []
    transcriber = AsyncMock()
    transcriber.transcribe.return_value = "amazing grace how sweet the sound"
    return SongMatchOrchestrator(app_config.song_match, library, lyric_search, transcriber)


@pytest.fixture
def queue():
    return ReviewQueue()


@pytest.fixture
async def client(monkeypatch, matcher, queue):
    monkeypatch.setattr(_state, "_song_matcher", matcher)
    monkeypatch.setattr(_state, "_queue", queue)
    app = FastAPI()
    app.include_router(worship_router)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.mark.integration
class TestWorshipRoutes:

    @pytest.mark.asyncio
    async def test_status_idle(self, client):
        resp = await client.get("/api/worship/status")
        assert resp.json()["status"] == "idle"

    @pytest.mark.asyncio
    async def test_record_stream_then_stop(self, client):
        assert (await client.post("/api/worship/record/start")).json()["status"] == "recording"

        resp = await client.post("/api/worship/record/audio", content=AUDIO)
        assert resp.json() == {"accepted": True, "audio_bytes": len(AUDIO)}

        resp = await client.post("/api/worship/record/stop")
        body = resp.json()
        assert body["state"]["status"] == "complete"
        assert body["matches"][0]["song"]["title"] == "Amazing Grace"

    @pytest.mark.asyncio
    async def test_audio_ignored_when_idle(self, client):
        resp = await client.post("/api/worship/record/audio", content=AUDIO)
        assert resp.json()["accepted"] is False

    @pytest.mark.asyncio
    async def test_identify_raw_body(self, client):
        resp = await client.post("/api/worship/identify", content=AUDIO)
        assert resp.json()["matches"][0]["song"]["id"] == "amazing-grace"

    @pytest.mark.asyncio
    async def test_identify_too_short(self, client):
        body = (await client.post("/api/worship/identify", content=b"abc")).json()
        assert body["matches"] == []
        assert body["state"]["status"] == "error"

    @pytest.mark.asyncio
    async def test_oversized_body_is_413(self, client, monkeypatch):
        monkeypatch.setattr(api_worship, "MAX_AUDIO_BODY_BYTES", 100)
        assert (await client.post("/api/worship/identify", content=AUDIO)).status_code == 413

    @pytest.mark.asyncio
    async def test_reset(self, client):
        await client.post("/api/worship/identify", content=b"abc")
        assert (await client.post("/api/worship/reset")).json()["status"] == "idle"

    @pytest.mark.asyncio
    async def test_search(self, client):
        resp = await client.post("/api/worship/search", json={"text": "Goodness of God"})
        assert resp.json()["matches"][0]["song"]["title"] == "Goodness of God"

    @pytest.mark.asyncio
    async def test_search_blank_is_400(self, client):
        assert (await client.post("/api/worship/search", json={"text": " "})).status_code == 400

    @pytest.mark.asyncio
    async def test_enqueue(self, client, queue):
        match = song_match("Way Maker", "Sinach", source="genius", confidence=0.9, strategy="genius")
        resp = await client.post("/api/worship/enqueue", json={"match": match.model_dump()})
        assert resp.status_code == 200
        assert resp.json()["kind"] == "song"
        assert queue.stats.detected == 1

    @pytest.mark.asyncio
    async def test_matcher_not_initialized(self, client, monkeypatch):
        monkeypatch.setattr(_state, "_song_matcher", None)
        assert (await client.get("/api/worship/status")).status_code == 503
