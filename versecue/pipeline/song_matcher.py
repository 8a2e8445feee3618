"""Press-to-identify song matching: record, transcribe, fan out, rank."""

import asyncio
import logging
import re
import time
from typing import Awaitable, Callable

from versecue.config import SongMatchConfig
from versecue.models.schemas import RecordingState, Song, SongMatch
from versecue.services.lyric_search import LyricSearchClient
from versecue.services.song_library import SongLibrary, normalize_search_text
from versecue.services.transcription import TranscriptionClient, TranscriptionError

logger = logging.getLogger("versecue.songs")

MSG_TOO_SHORT = "Recording too short, hold the button a little longer"
MSG_UNCLEAR = "Could not hear clearly, try again"

STOPWORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can", "her", "was",
    "one", "our", "out", "has", "him", "his", "how", "its", "may", "who", "did", "get",
    "let", "say", "she", "too", "use", "with", "that", "this", "from", "they", "will",
    "have", "been", "your", "what", "when", "there", "their", "which", "would", "about",
    "into", "than", "then", "them", "these", "some", "could", "other", "were", "just",
    "like", "over", "also", "only", "come", "came", "here", "more", "very", "even",
    "yeah", "gonna", "wanna", "well", "know", "cause", "because", "every", "ever",
    "where", "while", "through", "down", "upon", "unto", "thee", "thou", "thy",
})

# Local strategies run first in this order; it is also their precedence on ties
_LOCAL_STRATEGIES = ("title", "phrase", "first_words", "distinctive")


def song_key(song: Song) -> str:
    """Identity across sources: case-folded title+artist, alphanumerics only."""
    return re.sub(r"[\W_]+", "", f"{song.title}{song.artist}".casefold())


def first_phrase(text: str, max_chars: int = 50) -> str:
    """Text up to the first punctuation mark, trimmed to max_chars."""
    return re.split(r"[,.!?;:\n]", text, maxsplit=1)[0].strip()[:max_chars].strip()


def first_words(text: str, count: int) -> str:
    return " ".join(normalize_search_text(text).split()[:count])


def distinctive_words(text: str, min_len: int = 4, limit: int = 5) -> list[str]:
    """Non-stopwords of at least min_len letters, first occurrence order."""
    words = []
    for word in normalize_search_text(text).split():
        if len(word) < min_len or word in STOPWORDS or word in words:
            continue
        words.append(word)
        if len(words) >= limit:
            break
    return words


def rank_matches(groups: list[list[SongMatch]], cap: int = 8) -> list[SongMatch]:
    """Dedupe across strategy groups (first seen wins), local first, then by confidence."""
    seen = set()
    local, external = [], []
    for group in groups:
        for match in group:
            key = song_key(match.song)
            if not key or key in seen:
                continue
            seen.add(key)
            (local if match.is_local else external).append(match)
    external.sort(key=lambda m: m.confidence, reverse=True)
    return (local + external)[:cap]


class SongMatchOrchestrator:
    """Owns one RecordingSession at a time.

    Lifecycle: idle → recording → transcribing → searching → complete | error.
    - start_recording() always resets first; a new identify replaces, never
      stacks. Each reset bumps a generation counter, and any in-flight work
      from an older generation has its result discarded.
    - stop_recording() is idempotent. It cancels the auto-stop timer but
      never an in-flight transcription.
    - Too-short audio and unusable transcripts end in `error` with a short
      message; reset() returns to idle.

    Search fans out every strategy concurrently. Each strategy is isolated:
    a failure or timeout in one contributes [] and is logged.
    """

    def __init__(
        self,
        config: SongMatchConfig,
        library: SongLibrary,
        lyric_search: LyricSearchClient,
        transcriber: TranscriptionClient,
    ):
        self.config = config
        self.library = library
        self.lyric_search = lyric_search
        self.transcriber = transcriber

        self._state = RecordingState()
        self._buffer = bytearray()
        self._started_at: float | None = None
        self._generation = 0
        self._auto_stop_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._on_status: Callable[[RecordingState], Awaitable[None]] | None = None

        self._metrics = {
            "identifications": 0,
            "completed": 0,
            "errors": 0,
            "discarded_stale": 0,
            "strategy_failures": 0,
        }

    def set_callbacks(self, on_status=None):
        self._on_status = on_status

    @property
    def state(self) -> RecordingState:
        snapshot = self._state.model_copy()
        if self._state.status == "recording" and self._started_at is not None:
            snapshot.elapsed_seconds = round(time.monotonic() - self._started_at, 1)
        snapshot.audio_bytes = len(self._buffer) if self._state.status == "recording" else self._state.audio_bytes
        return snapshot

    @property
    def metrics(self) -> dict:
        return dict(self._metrics)

    # --- Recording lifecycle ---

    async def start_recording(self) -> RecordingState:
        self._reset_state()
        self._started_at = time.monotonic()
        await self._set_status("recording")
        if self.config.auto_stop_seconds:
            self._auto_stop_task = asyncio.create_task(self._auto_stop(self._generation))
        logger.info("Recording started (auto-stop %ss)", self.config.auto_stop_seconds)
        return self.state

    def add_audio(self, chunk: bytes) -> bool:
        """Append a chunk while recording. Chunks in any other state are ignored."""
        if self._state.status != "recording" or not chunk:
            return False
        self._buffer.extend(chunk)
        return True

    async def stop_recording(self) -> list[SongMatch]:
        """Stop and identify. Calling it again, or when not recording, is a no-op."""
        if self._state.status != "recording":
            return list(self._state.matches)
        self._cancel_auto_stop()
        audio = bytes(self._buffer)
        self._buffer.clear()
        self._state.elapsed_seconds = round(time.monotonic() - (self._started_at or time.monotonic()), 1)
        self._state.audio_bytes = len(audio)
        return await self._identify_audio(audio, self._generation)

    async def identify(self, audio: bytes) -> list[SongMatch]:
        """Identify an already-captured snippet, replacing any flow in progress."""
        self._reset_state()
        self._state.audio_bytes = len(audio)
        return await self._identify_audio(audio, self._generation)

    async def reset(self) -> RecordingState:
        self._reset_state()
        await self._notify()
        logger.info("Song identification reset")
        return self.state

    async def shutdown(self):
        self._generation += 1
        self._cancel_auto_stop()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # --- Identification ---

    async def _identify_audio(self, audio: bytes, generation: int) -> list[SongMatch]:
        self._metrics["identifications"] += 1
        if len(audio) < self.config.min_audio_bytes:
            logger.info("Rejected %d-byte snippet (min %d)", len(audio), self.config.min_audio_bytes)
            await self._fail(MSG_TOO_SHORT)
            return []

        await self._set_status("transcribing")
        try:
            text = await self.transcriber.transcribe(audio)
        except TranscriptionError as e:
            if self._is_stale(generation):
                return []
            logger.warning("Transcription failed: %s", e)
            await self._fail(MSG_UNCLEAR)
            return []

        if self._is_stale(generation):
            return []
        self._state.transcript = text
        if len(text.strip()) < self.config.min_transcript_chars:
            logger.info("Transcript too short to search: %r", text)
            await self._fail(MSG_UNCLEAR)
            return []

        await self._set_status("searching")
        matches = await self.search_text(text)
        if self._is_stale(generation):
            return []

        self._state.matches = matches
        self._metrics["completed"] += 1
        await self._set_status("complete")
        logger.info("Identified %d candidate(s) for %r", len(matches), text[:60])
        return matches

    async def search_text(self, text: str) -> list[SongMatch]:
        """Run every strategy concurrently against a transcript or typed text."""
        text = (text or "").strip()
        if not text:
            return []
        cfg = self.config
        phrase = first_phrase(text, cfg.max_phrase_chars)
        opening = first_words(text, cfg.first_words)
        keywords = distinctive_words(text, cfg.min_distinctive_word_len, cfg.max_distinctive_words)

        strategies: dict[str, Awaitable] = {"title": self._local("title", self.library.search_title(text))}
        if len(phrase) >= cfg.min_phrase_chars:
            strategies["phrase"] = self._local("phrase", self.library.search_lyrics(phrase))
        if len(opening.split()) >= 3:
            strategies["first_words"] = self._local("first_words", self.library.search_lyrics(opening))
        if len(keywords) >= 2:
            strategies["distinctive"] = self._local(
                "distinctive", self.library.search_lyrics_all_words(keywords),
            )
        strategies["genius"] = self.lyric_search.search_genius(text)
        strategies["lrclib"] = self.lyric_search.search_lrclib(phrase if len(phrase) >= cfg.min_phrase_chars else text)

        names = list(strategies)
        results = await asyncio.gather(*(self._isolated(n, strategies[n]) for n in names))
        by_name = dict(zip(names, results))

        ordered = [by_name.get(n, []) for n in _LOCAL_STRATEGIES]
        ordered += [by_name.get("genius", []), by_name.get("lrclib", [])]
        return rank_matches(ordered, cfg.max_results)

    async def _local(self, strategy: str, query: Awaitable[list[Song]]) -> list[SongMatch]:
        songs = await query
        return [
            SongMatch(song=s, confidence=self.config.local_confidence, source="local", strategy=strategy)
            for s in songs
        ]

    async def _isolated(self, name: str, coro: Awaitable[list[SongMatch]]) -> list[SongMatch]:
        try:
            return await asyncio.wait_for(coro, timeout=self.config.strategy_timeout_seconds)
        except asyncio.TimeoutError:
            self._metrics["strategy_failures"] += 1
            logger.warning("Song strategy %s timed out", name)
        except Exception as e:
            self._metrics["strategy_failures"] += 1
            logger.warning("Song strategy %s failed: %s", name, e)
        return []

    # --- Internals ---

    async def _auto_stop(self, generation: int):
        await asyncio.sleep(self.config.auto_stop_seconds)
        if self._is_stale(generation) or self._state.status != "recording":
            return
        logger.info("Auto-stopping recording after %ss", self.config.auto_stop_seconds)
        # Identification runs outside the timer so cancelling the timer never cancels it
        task = asyncio.create_task(self.stop_recording())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        self._auto_stop_task = None

    def _cancel_auto_stop(self):
        task = self._auto_stop_task
        self._auto_stop_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _reset_state(self):
        self._generation += 1
        self._cancel_auto_stop()
        self._buffer.clear()
        self._started_at = None
        self._state = RecordingState()

    def _is_stale(self, generation: int) -> bool:
        if generation != self._generation:
            self._metrics["discarded_stale"] += 1
            logger.info("Discarding result from a replaced identification")
            return True
        return False

    async def _fail(self, message: str):
        self._metrics["errors"] += 1
        self._state.error = message
        await self._set_status("error")

    async def _set_status(self, status: str):
        self._state.status = status
        await self._notify()

    async def _notify(self):
        if self._on_status is None:
            return
        try:
            await self._on_status(self.state)
        except Exception as e:
            logger.warning("Recording status callback failed: %s", e)
