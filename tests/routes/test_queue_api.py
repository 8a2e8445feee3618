"""HTTP tests for queue and detection routes against real queue and pipeline objects."""

from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI

from conftest import candidate, chat_response
from versecue.pipeline.detector import ProbabilisticDetector
from versecue.pipeline.orchestrator import DetectionPipeline
from versecue.pipeline.review_queue import InvalidTransition, QueueItemNotFound, ReviewQueue
from versecue.pipeline.transcript import TranscriptAggregator
from versecue.routes.api_detect import detect_router
from versecue.routes.api_queue import queue_router
import versecue.routes._state as _state


@pytest.fixture
def queue():
    return ReviewQueue(
        text_resolver=AsyncMock(return_value="For God so loved the world"),
        display_publisher=AsyncMock(),
    )


@pytest.fixture
def pipeline(app_config, queue, mock_httpx_client):
    detector = ProbabilisticDetector(app_config.detection, client=mock_httpx_client)
    return DetectionPipeline(app_config, queue, detector)


@pytest.fixture
def wired(monkeypatch, queue, pipeline):
    aggregator = TranscriptAggregator(on_final=pipeline.process_fragment)
    monkeypatch.setattr(_state, "_queue", queue)
    monkeypatch.setattr(_state, "_pipeline", pipeline)
    monkeypatch.setattr(_state, "_aggregator", aggregator)
    return aggregator


@pytest.fixture
async def client(wired):
    app = FastAPI()
    app.include_router(queue_router)
    app.include_router(detect_router)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Queue transitions
# ---------------------------------------------------------------------------


class TestQueueRoutes:

    @pytest.mark.asyncio
    async def test_snapshot(self, client, queue):
        await queue.add_candidate(candidate("John", 3, 16))
        resp = await client.get("/api/queue")
        assert resp.status_code == 200
        body = resp.json()
        assert len(body["pending"]) == 1
        assert body["stats"]["detected"] == 1
        assert body["settings"]["translation"] == "KJV"

    @pytest.mark.asyncio
    async def test_approve_then_display(self, client, queue):
        item = await queue.add_candidate(candidate("John", 3, 16))

        resp = await client.post(f"/api/queue/{item.id}/approve")
        assert resp.status_code == 200
        assert resp.json()["state"] == "approved"

        resp = await client.post(f"/api/queue/{item.id}/display")
        assert resp.status_code == 200
        assert resp.json()["resolved_text"] == "For God so loved the world"

        stats = (await client.get("/api/queue/stats")).json()
        assert stats == {"detected": 1, "approved": 1, "displayed": 1, "dismissed": 0}

    @pytest.mark.asyncio
    async def test_unknown_id_is_404(self, client):
        assert (await client.post("/api/queue/nope/approve")).status_code == 404
        assert (await client.get("/api/queue/nope")).status_code == 404
        assert (await client.delete("/api/queue/nope")).status_code == 404

    @pytest.mark.asyncio
    async def test_display_pending_is_409(self, client, queue):
        item = await queue.add_candidate(candidate("John", 3, 16))
        resp = await client.post(f"/api/queue/{item.id}/display")
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_dismiss_then_approve_is_409(self, client, queue):
        item = await queue.add_candidate(candidate("John", 3, 16))
        assert (await client.post(f"/api/queue/{item.id}/dismiss")).status_code == 200
        assert (await client.post(f"/api/queue/{item.id}/approve")).status_code == 409

    @pytest.mark.asyncio
    async def test_remove_keeps_history(self, client, queue):
        item = await queue.add_candidate(candidate("John", 3, 16))
        await queue.approve(item.id)
        resp = await client.delete(f"/api/queue/{item.id}")
        assert resp.json() == {"removed": True, "id": item.id}
        history = (await client.get("/api/queue/history")).json()
        assert [h["id"] for h in history] == [item.id]

    @pytest.mark.asyncio
    async def test_display_next(self, client, queue):
        assert (await client.post("/api/queue/display-next")).json() == {"item": None}
        first = await queue.add_candidate(candidate("John", 3, 16))
        second = await queue.add_candidate(candidate("Romans", 8, 28))
        await queue.approve(second.id)
        await queue.approve(first.id)
        resp = await client.post("/api/queue/display-next")
        assert resp.json()["item"]["id"] == first.id

    @pytest.mark.asyncio
    async def test_display_next_lost_race_is_conflict(self, client, queue, monkeypatch):
        monkeypatch.setattr(queue, "display_next", AsyncMock(
            side_effect=InvalidTransition("abc", "display", "dismissed"),
        ))
        resp = await client.post("/api/queue/display-next")
        assert resp.status_code == 409
        assert "dismissed" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_display_next_vanished_item_is_not_found(self, client, queue, monkeypatch):
        monkeypatch.setattr(queue, "display_next", AsyncMock(side_effect=QueueItemNotFound("abc")))
        assert (await client.post("/api/queue/display-next")).status_code == 404

    @pytest.mark.asyncio
    async def test_settings_update(self, client, queue):
        resp = await client.put("/api/queue/settings", json={"auto_approve": True, "translation": "web"})
        assert resp.json()["auto_approve"] is True
        assert queue.translation == "WEB"

    @pytest.mark.asyncio
    async def test_settings_threshold_validated(self, client):
        resp = await client.put("/api/queue/settings", json={"auto_approve_threshold": 1.5})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_queue_not_initialized(self, client, monkeypatch):
        monkeypatch.setattr(_state, "_queue", None)
        assert (await client.get("/api/queue")).status_code == 503


# ---------------------------------------------------------------------------
# Detection and transcript intake
# ---------------------------------------------------------------------------


class TestDetectRoutes:

    @pytest.mark.asyncio
    async def test_detect(self, client, mock_httpx_client):
        mock_httpx_client.post.return_value = chat_response({"references": []})
        resp = await client.post("/api/detect", json={"text": "John 3:16 is the verse", "use_llm": False})
        assert resp.status_code == 200
        [cand] = resp.json()["candidates"]
        assert cand["reference"]["book"] == "John"
        assert cand["origin"] == "deterministic"

    @pytest.mark.asyncio
    async def test_detect_blank_is_400(self, client):
        assert (await client.post("/api/detect", json={"text": "  "})).status_code == 400

    @pytest.mark.asyncio
    async def test_search_blank_is_400(self, client):
        assert (await client.post("/api/search-scripture", json={"query": ""})).status_code == 400

    @pytest.mark.asyncio
    async def test_transcript_fragment_queues_reference(self, client, queue, pipeline):
        pipeline.llm_enabled = False
        resp = await client.post("/api/transcript", json={"text": "open to Romans 8:28", "is_final": True})
        assert resp.status_code == 200
        assert resp.json()["stats"]["detected"] == 1
        assert [i.label for i in queue.pending()] == ["Romans 8:28"]

    @pytest.mark.asyncio
    async def test_transcript_view_and_clear(self, client):
        await client.post("/api/transcript", json={"text": "the lord is", "is_final": False})
        body = (await client.get("/api/transcript")).json()
        assert body["interim_text"] == "the lord is"
        assert (await client.delete("/api/transcript")).json() == {"cleared": True}
        assert (await client.get("/api/transcript")).json()["interim_text"] == ""
