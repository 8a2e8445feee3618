"""Session transcript buffering and speech-source supervision."""

import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Awaitable, Callable

from versecue.models.schemas import TranscriptFragment

logger = logging.getLogger("versecue.transcript")


class TranscriptAggregator:
    """Buffers finalized and interim fragments for one session.

    Only finalized fragments are handed to on_final (detection). Interim
    text replaces the previous interim text and is kept for passive display.
    """

    def __init__(
        self,
        on_final: Callable[[TranscriptFragment], Awaitable[None]] | None = None,
        on_update: Callable[[str, str], Awaitable[None]] | None = None,
        max_fragments: int = 500,
    ):
        self._on_final = on_final
        self._on_update = on_update  # async callback(final_text, interim_text)
        self._final: deque[TranscriptFragment] = deque(maxlen=max_fragments)
        self._interim = ""
        self.fragments_received = 0

    def set_callbacks(self, on_final=None, on_update=None):
        self._on_final = on_final
        self._on_update = on_update

    async def add_fragment(self, text: str, is_final: bool = True) -> TranscriptFragment | None:
        text = (text or "").strip()
        if not text:
            return None
        fragment = TranscriptFragment(text=text, is_final=is_final)
        self.fragments_received += 1

        if is_final:
            self._final.append(fragment)
            self._interim = ""
        else:
            self._interim = text

        if self._on_update:
            try:
                await self._on_update(self.final_text, self._interim)
            except Exception as e:
                logger.warning("Transcript update callback failed: %s", e)

        if is_final and self._on_final:
            await self._on_final(fragment)
        return fragment

    @property
    def final_text(self) -> str:
        return " ".join(f.text for f in self._final)

    @property
    def interim_text(self) -> str:
        return self._interim

    @property
    def fragments(self) -> list[TranscriptFragment]:
        return list(self._final)

    def clear(self):
        self._final.clear()
        self._interim = ""


class SpeechSourceSupervisor:
    """Keeps an external fragment stream running, restarting it with backoff.

    Speech engines end their streams on silence, network blips or session
    limits. A clean end restarts after INITIAL_BACKOFF; an error doubles the
    wait up to MAX_BACKOFF. Any fragment received resets the backoff. The
    aggregator never sees the restarts.

    This is where a live speech engine plugs in. Wrap its streaming client in
    a zero-argument factory that yields TranscriptFragment objects, and pass
    the aggregator stored in routes._state. The server itself takes fragments
    over /ws/session and /api/transcript, so main.py does not start one.
    """

    INITIAL_BACKOFF = 0.5
    BACKOFF_FACTOR = 2.0
    MAX_BACKOFF = 10.0

    def __init__(
        self,
        source_factory: Callable[[], AsyncIterator[TranscriptFragment]],
        aggregator: TranscriptAggregator,
        max_restarts: int | None = None,
    ):
        self._source_factory = source_factory
        self._aggregator = aggregator
        self._max_restarts = max_restarts
        self._task: asyncio.Task | None = None
        self.restarts = 0
        self.errors = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run(self):
        delay = self.INITIAL_BACKOFF
        while True:
            try:
                async for fragment in self._source_factory():
                    delay = self.INITIAL_BACKOFF
                    await self._aggregator.add_fragment(fragment.text, fragment.is_final)
                logger.info("Speech source ended, restarting")
                wait = self.INITIAL_BACKOFF
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.errors += 1
                wait = delay
                delay = min(delay * self.BACKOFF_FACTOR, self.MAX_BACKOFF)
                logger.warning("Speech source failed, restarting in %.1fs: %s", wait, e)

            if self._max_restarts is not None and self.restarts >= self._max_restarts:
                logger.info("Speech source restart limit (%d) reached", self._max_restarts)
                return
            self.restarts += 1
            await asyncio.sleep(wait)
