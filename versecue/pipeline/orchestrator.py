"""Detection pipeline: coordinates parser, detector, merger and queue."""

import asyncio
import logging
import time
from typing import Callable

from versecue.config import AppConfig
from versecue.models.schemas import DetectionCandidate, QueueItem, TranscriptFragment
from versecue.pipeline.detector import ProbabilisticDetector
from versecue.pipeline.merger import merge_candidates
from versecue.pipeline.review_queue import ReviewQueue
from versecue.services.phrases import find_phrase_matches
from versecue.services.reference_parser import ReferenceParser

logger = logging.getLogger("versecue.pipeline")


class DetectionPipeline:
    """Turns finalized transcript fragments into review-queue items.

    Fragment -> ReferenceParser (wave 1, synchronous, enqueued at once)
             -> verbatim phrase table (wave 1, only when the parser is empty)
             -> ProbabilisticDetector (wave 2, background task, merged later)

    The first wave never waits on the second. Second-wave candidates whose
    key was already produced by the parser for the same fragment are dropped,
    and any key queued within the cooldown window is suppressed.

    Lifecycle:
    - Created once during app lifespan (main.py). Stored in routes._state.
    - shutdown() waits briefly for in-flight model calls, then closes the
      detector's HTTP client.

    Error contract:
    - process_fragment never raises for detector problems; the detector
      degrades to [] on its own.
    - Interim fragments are ignored here (display only).
    """

    def __init__(
        self,
        config: AppConfig,
        queue: ReviewQueue,
        detector: ProbabilisticDetector,
        parser: ReferenceParser | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.queue = queue
        self.detector = detector
        self.parser = parser or ReferenceParser()
        self._clock = clock

        # Reference key -> clock time it last entered the queue
        self._recent: dict[str, float] = {}
        self._inflight: set[asyncio.Task] = set()
        self.llm_enabled = True

        self._metrics = {
            "fragments_processed": 0,
            "interim_ignored": 0,
            "deterministic_candidates": 0,
            "phrase_candidates": 0,
            "probabilistic_candidates": 0,
            "probabilistic_waves": 0,
            "cooldown_suppressed": 0,
            "items_queued": 0,
        }

    @property
    def metrics(self) -> dict:
        """Return a snapshot of runtime metrics including detector state."""
        return {
            **self._metrics,
            "inflight_detections": len(self._inflight),
            "detector": self.detector.metrics,
        }

    @property
    def cooldown_seconds(self) -> float:
        return self.config.queue.cooldown_seconds

    # --- Live path ---

    async def process_fragment(self, fragment: TranscriptFragment) -> list[QueueItem]:
        """Enqueue parser hits now; schedule the model pass in the background."""
        if not fragment.is_final:
            self._metrics["interim_ignored"] += 1
            return []
        text = fragment.text.strip()
        if not text:
            return []
        self._metrics["fragments_processed"] += 1

        deterministic = self.parser.parse(text)
        self._metrics["deterministic_candidates"] += len(deterministic)
        quoted = self._phrase_pass(text, deterministic)
        first_wave = merge_candidates(
            deterministic, quoted, floor=self.config.detection.confidence_floor,
        )
        items = await self._enqueue(first_wave)

        if self.llm_enabled and self.detector.enabled:
            emitted = {c.key for c in first_wave}
            task = asyncio.create_task(self._probabilistic_wave(text, emitted))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

        return items

    def _phrase_pass(self, text: str, deterministic: list[DetectionCandidate]) -> list[DetectionCandidate]:
        # A literal citation already says which verse is meant
        if deterministic:
            return []
        quoted = find_phrase_matches(text)
        self._metrics["phrase_candidates"] += len(quoted)
        return quoted

    async def process_text(self, text: str, is_final: bool = True) -> list[QueueItem]:
        return await self.process_fragment(TranscriptFragment(text=text, is_final=is_final))

    async def _probabilistic_wave(self, text: str, emitted: set[str]) -> list[QueueItem]:
        self._metrics["probabilistic_waves"] += 1
        probabilistic = await self.detector.detect(text)
        self._metrics["probabilistic_candidates"] += len(probabilistic)
        merged = merge_candidates(
            [], probabilistic,
            floor=self.config.detection.confidence_floor,
            exclude_keys=emitted,
        )
        if merged:
            logger.info(
                "Model wave added %d candidate(s): %s",
                len(merged), ", ".join(c.reference.display for c in merged),
            )
        return await self._enqueue(merged)

    async def wait_for_inflight(self, timeout: float = 15.0):
        """Wait for background model passes to finish."""
        if not self._inflight:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*self._inflight, return_exceptions=True),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for %d in-flight detection(s)", len(self._inflight))

    # --- On-demand paths (no queueing) ---

    async def detect(self, text: str, use_llm: bool = True) -> list[DetectionCandidate]:
        """Both passes awaited and merged, without touching the queue."""
        deterministic = self.parser.parse(text)
        probabilistic = self._phrase_pass(text, deterministic)
        if use_llm and self.detector.enabled:
            probabilistic = probabilistic + await self.detector.detect(text)
        return merge_candidates(
            deterministic, probabilistic, floor=self.config.detection.confidence_floor,
        )

    async def search(self, query: str) -> list[DetectionCandidate]:
        """Operator search: literal citations in the query first, then the model."""
        deterministic = self.parser.parse(query)
        probabilistic = await self.detector.search(query)
        return merge_candidates(
            deterministic, probabilistic, floor=self.config.detection.search_confidence_floor,
        )

    # --- Internals ---

    def _in_cooldown(self, key: str, now: float) -> bool:
        window = self.cooldown_seconds
        if window <= 0:
            return False
        last = self._recent.get(key)
        return last is not None and now - last < window

    async def _enqueue(self, candidates: list[DetectionCandidate]) -> list[QueueItem]:
        items = []
        now = self._clock()
        for c in candidates:
            if self._in_cooldown(c.key, now):
                self._metrics["cooldown_suppressed"] += 1
                logger.debug("Suppressed %s (cooldown)", c.reference.display)
                continue
            self._recent[c.key] = now
            items.append(await self.queue.add_candidate(c))
            self._metrics["items_queued"] += 1
        self._prune_recent(now)
        return items

    def _prune_recent(self, now: float):
        window = self.cooldown_seconds
        if len(self._recent) < 256:
            return
        self._recent = {k: t for k, t in self._recent.items() if now - t < window}

    def reset_cooldown(self):
        self._recent.clear()

    async def shutdown(self):
        """Wait for in-flight model passes (max 15s), then close clients."""
        logger.info("Pipeline shutting down... metrics=%s", self._metrics)
        await self.wait_for_inflight(timeout=15.0)
        await self.detector.close()
        logger.info("Pipeline shut down")
