"""VerseCue: live scripture and worship-song cueing server."""

import logging
import signal
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, WebSocket
from starlette.requests import Request
import time as _time

from versecue.config import load_config
from versecue.db.database import init_db, close_db
from versecue.pipeline.detector import ProbabilisticDetector
from versecue.pipeline.orchestrator import DetectionPipeline
from versecue.pipeline.review_queue import ReviewQueue
from versecue.pipeline.song_matcher import SongMatchOrchestrator
from versecue.pipeline.transcript import TranscriptAggregator
from versecue.routes._state import (
    set_aggregator,
    set_display,
    set_pipeline,
    set_queue,
    set_song_matcher,
)
from versecue.routes.api_detect import detect_router
from versecue.routes.api_queue import queue_router
from versecue.routes.api_worship import worship_router
from versecue.routes.websocket import (
    broadcast_queue_update,
    broadcast_recording_state,
    broadcast_transcript,
    display_endpoint,
    session_count,
    session_endpoint,
)
from versecue.services.bible_text import BibleTextClient
from versecue.services.display import DisplayBroadcaster
from versecue.services.lyric_search import LyricSearchClient
from versecue.services.song_library import SongLibrary
from versecue.services.transcription import TranscriptionClient

# Logging with file rotation
import os
import logging.handlers

_log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
_log_dir = Path(os.getenv("LOG_DIR", "data"))
_log_dir.mkdir(parents=True, exist_ok=True)

# Console handler (human-readable)
_console = logging.StreamHandler()
_console.setFormatter(logging.Formatter(
    "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
))
_console.setLevel(_log_level)

# Rotating file handler (full detail, 10MB x 5 files)
_file_handler = logging.handlers.RotatingFileHandler(
    _log_dir / "versecue.log",
    maxBytes=10 * 1024 * 1024,  # 10MB
    backupCount=5,
    encoding="utf-8",
)
_file_handler.setFormatter(logging.Formatter(
    "%(asctime)s [%(name)s] %(levelname)s: %(message)s  [%(filename)s:%(lineno)d]",
))
_file_handler.setLevel(logging.DEBUG)

# Error-only file (quick scan for problems)
_error_handler = logging.handlers.RotatingFileHandler(
    _log_dir / "versecue_errors.log",
    maxBytes=5 * 1024 * 1024,  # 5MB
    backupCount=3,
    encoding="utf-8",
)
_error_handler.setFormatter(logging.Formatter(
    "%(asctime)s [%(name)s] %(levelname)s: %(message)s  [%(filename)s:%(lineno)d]",
))
_error_handler.setLevel(logging.ERROR)

# Configure root logger
logging.basicConfig(level=logging.DEBUG, handlers=[_console, _file_handler, _error_handler])
logger = logging.getLogger("versecue")

# Global components and config
pipeline: DetectionPipeline | None = None
queue: ReviewQueue | None = None
song_matcher: SongMatchOrchestrator | None = None
display: DisplayBroadcaster | None = None
app_config = None


async def _seed_song_library(library: SongLibrary, songs_dir: Path) -> int:
    """Load every songs/*.json file into the library. A bad file is skipped."""
    loaded = 0
    for path in sorted(songs_dir.glob("*.json")):
        try:
            loaded += await library.load_from_json(path)
        except (OSError, ValueError) as e:
            logger.warning("Skipping song file %s: %s", path.name, e)
    return loaded


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    global pipeline, queue, song_matcher, display, app_config
    config = load_config()
    app_config = config

    logger.info("=" * 50)
    logger.info("  VerseCue starting up")
    logger.info(f"  LLM: {config.detection.provider}/{config.detection.model}"
                f" ({'on' if config.detection.is_configured else 'off'})")
    logger.info(f"  Transcription: {config.transcription.model}")
    logger.info(f"  Auto-approve: {config.queue.auto_approve} (>= {config.queue.auto_approve_threshold})")
    logger.info(f"  Organization: {config.organization_id}")
    logger.info("=" * 50)

    # Initialize database and seed the song library
    await init_db(config.db_path)
    logger.info(f"Database ready: {config.db_path}")
    library = SongLibrary(config.organization_id)
    await _seed_song_library(library, config.data_dir / "songs")
    logger.info(f"Song library: {await library.count()} songs")

    # Display fan-out and verse text lookup
    display = DisplayBroadcaster()
    bible_text = BibleTextClient(config.bible_text)
    set_display(display)

    # Review queue
    queue = ReviewQueue(
        auto_approve=config.queue.auto_approve,
        auto_approve_threshold=config.queue.auto_approve_threshold,
        translation=config.queue.default_translation,
        text_resolver=bible_text.fetch_text,
        display_publisher=display.publish,
    )
    queue.set_callbacks(on_change=broadcast_queue_update)
    set_queue(queue)

    # Scripture detection
    detector = ProbabilisticDetector(config.detection)
    pipeline = DetectionPipeline(config, queue, detector)
    set_pipeline(pipeline)

    aggregator = TranscriptAggregator(
        on_final=pipeline.process_fragment,
        on_update=broadcast_transcript,
    )
    set_aggregator(aggregator)

    # Song identification
    lyric_search = LyricSearchClient(config.lyric_search)
    transcriber = TranscriptionClient(config.transcription)
    song_matcher = SongMatchOrchestrator(config.song_match, library, lyric_search, transcriber)
    song_matcher.set_callbacks(on_status=broadcast_recording_state)
    set_song_matcher(song_matcher)

    # Register signal handlers for graceful shutdown logging
    def _signal_handler(signum, frame):
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating graceful shutdown...")

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _signal_handler)
        except (OSError, ValueError):
            pass  # Not all signals available on all platforms

    yield

    # Shutdown: pipeline waits for in-flight model calls before closing
    logger.info("Shutting down...")
    await song_matcher.shutdown()
    await pipeline.shutdown()
    await lyric_search.close()
    await transcriber.close()
    await bible_text.close()
    await close_db()
    logger.info("Shutdown complete.")


app = FastAPI(
    title="VerseCue",
    description="Live scripture reference detection and worship song identification",
    version="0.1.0",
    lifespan=lifespan,
)

# REST routes
app.include_router(queue_router)
app.include_router(detect_router)
app.include_router(worship_router)

# Slow request logging middleware
_SLOW_REQUEST_THRESHOLD = float(os.getenv("SLOW_REQUEST_THRESHOLD", "5.0"))
_TIMING_EXCLUDED_PATHS = {"/health", "/ws/session", "/ws/display"}


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    if request.url.path in _TIMING_EXCLUDED_PATHS:
        return await call_next(request)
    start = _time.monotonic()
    response = await call_next(request)
    duration = _time.monotonic() - start
    if duration > _SLOW_REQUEST_THRESHOLD:
        logger.warning(
            f"Slow request: {request.method} {request.url.path} "
            f"took {duration:.2f}s (threshold: {_SLOW_REQUEST_THRESHOLD}s)"
        )
    response.headers["X-Request-Duration-Ms"] = str(round(duration * 1000))
    return response


# WebSocket endpoints
@app.websocket("/ws/session")
async def ws_session(websocket: WebSocket):
    await session_endpoint(websocket)


@app.websocket("/ws/display")
async def ws_display(websocket: WebSocket):
    await display_endpoint(websocket)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    if pipeline is None:
        return {"status": "starting", "components": {}}
    detector_metrics = pipeline.detector.metrics
    return {
        "status": "degraded" if detector_metrics.get("degraded") else "ok",
        "components": {
            "detector": "on" if pipeline.detector.enabled else "off",
            "operators": session_count(),
            "displays": display.subscriber_count if display else 0,
        },
        "pipeline_metrics": pipeline.metrics,
        "queue_stats": queue.stats if queue else None,
        "song_metrics": song_matcher.metrics if song_matcher else None,
    }
