"""Shared mutable state for API route modules.

Globals are set once during app lifespan startup via the setter functions.
Route modules import from here to avoid circular dependencies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from versecue.pipeline.orchestrator import DetectionPipeline
    from versecue.pipeline.review_queue import ReviewQueue
    from versecue.pipeline.song_matcher import SongMatchOrchestrator
    from versecue.pipeline.transcript import TranscriptAggregator
    from versecue.services.display import DisplayBroadcaster

_pipeline: DetectionPipeline | None = None
_queue: ReviewQueue | None = None
_song_matcher: SongMatchOrchestrator | None = None
_aggregator: TranscriptAggregator | None = None
_display: DisplayBroadcaster | None = None


def set_pipeline(pipeline):
    global _pipeline
    _pipeline = pipeline


def set_queue(queue):
    global _queue
    _queue = queue


def set_song_matcher(matcher):
    global _song_matcher
    _song_matcher = matcher


def set_aggregator(aggregator):
    global _aggregator
    _aggregator = aggregator


def set_display(display):
    global _display
    _display = display
