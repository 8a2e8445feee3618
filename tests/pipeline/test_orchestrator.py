"""Tests for the detection pipeline: two-wave detection, cooldown, and end-to-end flows.

The language-model provider is mocked at the HTTP client.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import chat_response
from versecue.models.schemas import TranscriptFragment
from versecue.pipeline.detector import ProbabilisticDetector
from versecue.pipeline.orchestrator import DetectionPipeline
from versecue.pipeline.review_queue import ReviewQueue
from versecue.pipeline.transcript import SpeechSourceSupervisor, TranscriptAggregator


def model_refs(*refs):
    """Chat response listing (book, chapter, verse, confidence) tuples."""
    return chat_response({"references": [
        {"book": b, "chapter": c, "verseStart": v, "verseEnd": None,
         "confidence": conf, "reasoning": "paraphrase"}
        for b, c, v, conf in refs
    ]})


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def publisher():
    return AsyncMock()


@pytest.fixture
def queue(publisher):
    return ReviewQueue(
        text_resolver=AsyncMock(return_value="For God so loved the world"),
        display_publisher=publisher,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pipeline(app_config, queue, mock_httpx_client, clock):
    detector = ProbabilisticDetector(app_config.detection, client=mock_httpx_client)
    return DetectionPipeline(app_config, queue, detector, clock=clock)


def labels(items):
    return [i.label for i in items]


# ---------------------------------------------------------------------------
# Two-wave detection
# ---------------------------------------------------------------------------


class TestTwoWaveDetection:

    @pytest.mark.asyncio
    async def test_parser_hit_queued_immediately(self, pipeline, queue):
        items = await pipeline.process_text("please turn with me to Romans 8:28 this morning")
        assert labels(items) == ["Romans 8:28"]
        assert items[0].candidate.origin == "deterministic"
        assert labels(queue.pending()) == ["Romans 8:28"]

    @pytest.mark.asyncio
    async def test_first_wave_does_not_wait_for_model(self, pipeline, queue, mock_httpx_client):
        release = asyncio.Event()

        async def slow_post(*args, **kwargs):
            await release.wait()
            return model_refs(("Ephesians", 2, 8, 0.9))

        mock_httpx_client.post.side_effect = slow_post
        items = await pipeline.process_text("we are saved by grace through faith, Romans 10:9 says")

        assert labels(items) == ["Romans 10:9"]
        assert labels(queue.pending()) == ["Romans 10:9"]

        release.set()
        await pipeline.wait_for_inflight()
        assert labels(queue.pending()) == ["Romans 10:9", "Ephesians 2:8"]

    @pytest.mark.asyncio
    async def test_second_wave_skips_parser_duplicates(self, pipeline, queue, mock_httpx_client):
        mock_httpx_client.post.return_value = model_refs(
            ("John", 3, 16, 0.95),
            ("Romans", 5, 8, 0.9),
        )
        await pipeline.process_text("John 3:16 says God so loved the world that he gave")
        await pipeline.wait_for_inflight()

        items = queue.pending()
        assert labels(items) == ["John 3:16", "Romans 5:8"]
        assert [i.candidate.origin for i in items] == ["deterministic", "probabilistic"]

    @pytest.mark.asyncio
    async def test_second_wave_floor(self, pipeline, queue, mock_httpx_client):
        mock_httpx_client.post.return_value = model_refs(
            ("Psalms", 23, 1, 0.79),
            ("Psalms", 23, 4, 0.85),
        )
        await pipeline.process_text("the Lord guides me like a shepherd, even though I walk through the valley")
        await pipeline.wait_for_inflight()
        assert labels(queue.pending()) == ["Psalms 23:4"]

    @pytest.mark.asyncio
    async def test_interim_fragment_ignored(self, pipeline, queue, mock_httpx_client):
        assert await pipeline.process_text("turn to John 3:16 everybody", is_final=False) == []
        await pipeline.wait_for_inflight()
        assert queue.pending() == []
        mock_httpx_client.post.assert_not_called()
        assert pipeline.metrics["interim_ignored"] == 1

    @pytest.mark.asyncio
    async def test_model_disabled_parser_only(self, pipeline, queue, mock_httpx_client):
        pipeline.llm_enabled = False
        await pipeline.process_text("Hebrews 11:1 now faith is the substance of things hoped for")
        await pipeline.wait_for_inflight()
        assert labels(queue.pending()) == ["Hebrews 11:1"]
        mock_httpx_client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_model_failure_keeps_parser_results(self, pipeline, queue, mock_httpx_client):
        mock_httpx_client.post.side_effect = ValueError("invalid model")
        await pipeline.process_text("Philippians 4:13 I can do all things through Christ")
        await pipeline.wait_for_inflight()
        assert labels(queue.pending()) == ["Philippians 4:13"]


# ---------------------------------------------------------------------------
# Verbatim phrases
# ---------------------------------------------------------------------------


class TestVerbatimPhrases:

    @pytest.mark.asyncio
    async def test_quote_queued_in_first_wave(self, pipeline, queue):
        pipeline.llm_enabled = False
        items = await pipeline.process_text("for God so loved the world that he gave")
        assert labels(items) == ["John 3:16"]
        candidate = items[0].candidate
        assert candidate.origin == "probabilistic"
        assert candidate.confidence == 0.90
        assert candidate.rationale == "verbatim phrase"
        assert pipeline.metrics["phrase_candidates"] == 1

    @pytest.mark.asyncio
    async def test_literal_citation_suppresses_quotes(self, pipeline, queue):
        pipeline.llm_enabled = False
        await pipeline.process_text("Romans 8:28 says all things work together for good")
        assert labels(queue.pending()) == ["Romans 8:28"]
        assert pipeline.metrics["phrase_candidates"] == 0

    @pytest.mark.asyncio
    async def test_second_wave_skips_quoted_reference(self, pipeline, queue, mock_httpx_client):
        mock_httpx_client.post.return_value = model_refs(
            ("Psalms", 23, 1, 0.95),
            ("Psalms", 23, 4, 0.9),
        )
        await pipeline.process_text("the Lord is my shepherd and he leads me")
        await pipeline.wait_for_inflight()
        items = queue.pending()
        assert labels(items) == ["Psalms 23:1", "Psalms 23:4"]
        assert items[0].candidate.rationale == "verbatim phrase"

    @pytest.mark.asyncio
    async def test_quote_not_auto_approved(self, pipeline, queue):
        pipeline.llm_enabled = False
        queue.configure(auto_approve=True, auto_approve_threshold=0.95)
        [item] = await pipeline.process_text("be still and know that I am God")
        assert item.state == "pending"

    @pytest.mark.asyncio
    async def test_detect_includes_quotes(self, pipeline, mock_httpx_client):
        result = await pipeline.detect("I can do all things through Christ", use_llm=False)
        assert [c.reference.display for c in result] == ["Philippians 4:13"]
        mock_httpx_client.post.assert_not_called()


# ---------------------------------------------------------------------------
# Cooldown
# ---------------------------------------------------------------------------


class TestCooldown:

    @pytest.mark.asyncio
    async def test_repeat_within_window_suppressed(self, pipeline, queue, clock):
        await pipeline.process_text("John 3:16")
        clock.now += 30
        assert await pipeline.process_text("again, John 3:16") == []
        assert len(queue.pending()) == 1
        assert pipeline.metrics["cooldown_suppressed"] == 1

    @pytest.mark.asyncio
    async def test_repeat_after_window_queued(self, pipeline, queue, clock):
        await pipeline.process_text("John 3:16")
        clock.now += 61
        assert labels(await pipeline.process_text("John 3:16")) == ["John 3:16"]
        assert len(queue.pending()) == 2

    @pytest.mark.asyncio
    async def test_cooldown_disabled(self, app_config, queue, mock_httpx_client, clock):
        app_config.queue.cooldown_seconds = 0
        detector = ProbabilisticDetector(app_config.detection, client=mock_httpx_client)
        pipeline = DetectionPipeline(app_config, queue, detector, clock=clock)
        await pipeline.process_text("John 3:16")
        await pipeline.process_text("John 3:16")
        assert len(queue.pending()) == 2

    @pytest.mark.asyncio
    async def test_reset_cooldown(self, pipeline, queue):
        await pipeline.process_text("John 3:16")
        pipeline.reset_cooldown()
        await pipeline.process_text("John 3:16")
        assert len(queue.pending()) == 2


# ---------------------------------------------------------------------------
# On-demand detection and search
# ---------------------------------------------------------------------------


class TestOnDemand:

    @pytest.mark.asyncio
    async def test_detect_does_not_queue(self, pipeline, queue, mock_httpx_client):
        mock_httpx_client.post.return_value = model_refs(("Romans", 5, 8, 0.9))
        result = await pipeline.detect("John 3:16 and God demonstrates his love toward us")
        assert [c.reference.display for c in result] == ["John 3:16", "Romans 5:8"]
        assert queue.pending() == []

    @pytest.mark.asyncio
    async def test_detect_without_model(self, pipeline, mock_httpx_client):
        result = await pipeline.detect("John 3:16 and more words here", use_llm=False)
        assert [c.reference.display for c in result] == ["John 3:16"]
        mock_httpx_client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_search_literal_first(self, pipeline, mock_httpx_client):
        mock_httpx_client.post.return_value = chat_response({"results": [
            {"book": "Luke", "chapter": 15, "verseStart": 4, "verseEnd": 7, "confidence": 0.76},
            {"book": "John", "chapter": 10, "verseStart": 11, "confidence": 0.74},
        ]})
        result = await pipeline.search("Matthew 18:12 lost sheep")
        assert [c.reference.display for c in result] == ["Matthew 18:12", "Luke 15:4-7"]


# ---------------------------------------------------------------------------
# End-to-end
# ---------------------------------------------------------------------------


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_spoken_reference_to_display(self, pipeline, queue, publisher):
        aggregator = TranscriptAggregator(on_final=pipeline.process_fragment)
        await aggregator.add_fragment("turn to John chapter", is_final=False)
        await aggregator.add_fragment("turn to John chapter 3 verse 16", is_final=True)
        await pipeline.wait_for_inflight()

        [item] = queue.pending()
        await queue.approve(item.id)
        await queue.display(item.id)

        publisher.assert_awaited_once()
        payload = publisher.await_args.args[0]
        assert payload.reference == "John 3:16"
        assert payload.resolved_text == "For God so loved the world"
        assert queue.stats.displayed == 1

    @pytest.mark.asyncio
    async def test_supervised_speech_source_feeds_queue(self, pipeline, queue):
        pipeline.llm_enabled = False

        async def speech_engine():
            yield TranscriptFragment(text="open your Bibles to", is_final=False)
            yield TranscriptFragment(text="open your Bibles to Romans 8:28", is_final=True)

        aggregator = TranscriptAggregator(on_final=pipeline.process_fragment)
        supervisor = SpeechSourceSupervisor(speech_engine, aggregator, max_restarts=0)
        await supervisor.run()

        assert labels(queue.pending()) == ["Romans 8:28"]
        assert aggregator.final_text == "open your Bibles to Romans 8:28"

    @pytest.mark.asyncio
    async def test_ordinary_speech_queues_nothing(self, pipeline, queue):
        await pipeline.process_fragment(TranscriptFragment(text="God is so good today"))
        await pipeline.wait_for_inflight()
        assert queue.pending() == []
        assert queue.stats.detected == 0

    @pytest.mark.asyncio
    async def test_auto_approve_then_display_next(self, pipeline, queue, publisher):
        queue.configure(auto_approve=True, auto_approve_threshold=0.95)
        await pipeline.process_text("open to Isaiah 40:31 they that wait upon the Lord")
        await pipeline.wait_for_inflight()
        shown = await queue.display_next()
        assert shown.label == "Isaiah 40:31"
        assert publisher.await_args.args[0].reference == "Isaiah 40:31"


class TestShutdown:

    @pytest.mark.asyncio
    async def test_shutdown_waits_and_closes(self, pipeline, queue, mock_httpx_client):
        mock_httpx_client.post.return_value = model_refs(("Romans", 5, 8, 0.9))
        await pipeline.process_text("God demonstrates his own love toward us in this")
        await pipeline.shutdown()
        assert labels(queue.pending()) == ["Romans 5:8"]
        mock_httpx_client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_metrics_snapshot(self, pipeline):
        await pipeline.process_text("John 3:16")
        m = pipeline.metrics
        assert m["fragments_processed"] == 1
        assert m["deterministic_candidates"] == 1
        assert m["items_queued"] == 1
        assert "detector" in m
