"""Language-model scripture detector (Groq, OpenAI, LM Studio, Ollama)."""

import asyncio
import json
import logging
import time

import httpx

from versecue.config import DetectionConfig
from versecue.models.prompts import (
    DETECTION_SYSTEM_PROMPT,
    SEARCH_SYSTEM_PROMPT,
    build_detection_user_prompt,
    build_search_user_prompt,
)
from versecue.models.schemas import DetectionCandidate, ScriptureReference
from versecue.services.bible_books import is_valid_reference, resolve_book

logger = logging.getLogger("versecue.detector")

# Errors that should NOT be retried (permanent failures)
_PERMANENT_ERRORS = ("model not found", "invalid model", "404", "invalid_api_key")

# Providers speaking the OpenAI chat-completions dialect
_CHAT_PROVIDERS = ("groq", "openai", "lmstudio")
_CLOUD_PROVIDERS = {"groq", "openai"}

# Words that make a fragment worth a model call when the keyword gate is on
TRIGGER_KEYWORDS = (
    "paul", "jesus", "moses", "david", "abraham", "peter", "john",
    "prophet", "apostle", "disciples",
    "gospel", "psalm", "proverb", "parable",
    "sermon on the mount", "beatitudes", "lord's prayer",
    "old testament", "new testament",
    "wrote", "said", "taught", "preached", "spoke",
    "remember when", "that passage", "that verse",
    "as it is written", "scripture tells us", "the word says",
    "letter to", "wrote to", "epistle",
    "corinth", "rome", "ephesus", "galatia", "philippi", "colossae", "thessalonica",
    "love is patient", "armor of god", "fruit of the spirit",
    "the lord is my shepherd", "in the beginning", "for god so loved",
)


def contains_trigger_keywords(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in TRIGGER_KEYWORDS)


def _is_retryable(error: Exception) -> bool:
    """Determine if an error is transient and worth retrying."""
    if isinstance(error, (httpx.TimeoutException, httpx.ConnectError,
                          httpx.RemoteProtocolError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        if error.response.status_code == 429:
            return True
        return error.response.status_code >= 500
    msg = str(error).lower()
    if any(p in msg for p in _PERMANENT_ERRORS):
        return False
    return isinstance(error, (OSError, ConnectionError))


def _extract_first_json(text: str) -> str:
    start = text.find("{")
    if start == -1:
        return text
    in_str = False
    escape = False
    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == "\"":
                in_str = False
        else:
            if ch == "\"":
                in_str = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
    return text[start:]


def _as_int(value) -> int | None:
    """Coerce a JSON scalar to a positive int, or None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float) and value.is_integer():
        return int(value) if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
        return number if number > 0 else None
    return None


def _as_confidence(value) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        conf = float(value)
    except (TypeError, ValueError):
        return None
    if conf > 1.0 and conf <= 100.0:
        conf = conf / 100.0  # some models answer in percent
    if not 0.0 <= conf <= 1.0:
        return None
    return conf


class ProbabilisticDetector:
    """Asks an LLM for scripture references and re-validates every answer.

    The model is told a miss is better than a false positive. Whatever it
    returns is treated as untrusted: book names go through resolve_book(),
    chapter/verse numbers through is_valid_reference(), and anything under
    the confidence floor is dropped.

    Error contract:
    - _call_llm raises on permanent errors (bad key, unknown model).
    - detect() and search() never raise; any failure yields [].
    - After DEGRADED_THRESHOLD consecutive timeouts, retries are skipped and
      a shorter timeout applies until a call succeeds.
    """

    MAX_RETRIES_LOCAL = 0
    MAX_RETRIES_CLOUD = 2
    INITIAL_BACKOFF = 0.5
    BACKOFF_FACTOR = 2.0
    MAX_BACKOFF = 4.0

    DEGRADED_THRESHOLD = 3
    DEGRADED_TIMEOUT = 4.0

    def __init__(self, config: DetectionConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=5.0,
                read=config.timeout_seconds,
                write=5.0,
                pool=5.0,
            )
        )

        self._metrics = {
            "requests": 0,
            "successes": 0,
            "retries": 0,
            "failures": 0,
            "timeouts": 0,
            "skipped_short": 0,
            "skipped_no_trigger": 0,
            "rejected_invalid": 0,
            "rejected_low_confidence": 0,
            "total_latency_ms": 0.0,
            "last_error": None,
            "last_error_time": None,
        }
        self._consecutive_timeouts = 0
        self._degraded = False

    @property
    def enabled(self) -> bool:
        return self.config.is_configured

    @property
    def metrics(self) -> dict:
        m = dict(self._metrics)
        m["provider"] = self.config.provider
        m["model"] = self.config.model
        m["enabled"] = self.enabled
        m["degraded"] = self._degraded
        m["consecutive_timeouts"] = self._consecutive_timeouts
        return m

    # --- Public API ---

    async def detect(self, text: str, floor: float | None = None) -> list[DetectionCandidate]:
        """Detect references in a finalized transcript fragment."""
        if not self.enabled or not text:
            return []
        text = text.strip()
        if len(text) < self.config.min_fragment_chars:
            self._metrics["skipped_short"] += 1
            return []
        if self.config.require_trigger_keywords and not contains_trigger_keywords(text):
            self._metrics["skipped_no_trigger"] += 1
            return []

        threshold = self.config.confidence_floor if floor is None else floor
        try:
            raw = await self._call_llm(DETECTION_SYSTEM_PROMPT, build_detection_user_prompt(text))
        except httpx.TimeoutException:
            logger.warning("%s detection timeout, no probabilistic results", self.config.provider)
            return []
        except Exception as e:
            logger.error("Detection failed (%s): %s", self.config.provider, e)
            return []
        return self._parse_response(raw, threshold, list_key="references")

    async def search(self, query: str, floor: float | None = None) -> list[DetectionCandidate]:
        """Query-driven lookup ("the one about the lost sheep")."""
        if not self.enabled or not query or not query.strip():
            return []
        threshold = self.config.search_confidence_floor if floor is None else floor
        try:
            raw = await self._call_llm(SEARCH_SYSTEM_PROMPT, build_search_user_prompt(query.strip()))
        except Exception as e:
            logger.warning("Scripture search failed (%s): %s", self.config.provider, e)
            return []
        return self._parse_response(raw, threshold, list_key="results")

    # --- Provider calls ---

    async def _call_llm(self, system_prompt: str, user_prompt: str) -> str:
        """Call the active provider with retry logic. Returns raw text response."""
        provider = self.config.provider
        if self._degraded:
            max_retries = 0
        elif provider in _CLOUD_PROVIDERS:
            max_retries = self.MAX_RETRIES_CLOUD
        else:
            max_retries = self.MAX_RETRIES_LOCAL
        last_error = None

        for attempt in range(max_retries + 1):
            self._metrics["requests"] += 1
            start = time.monotonic()

            try:
                if provider == "ollama":
                    coro = self._call_ollama(system_prompt, user_prompt)
                elif provider in _CHAT_PROVIDERS:
                    coro = self._call_chat_completions(system_prompt, user_prompt)
                else:
                    raise ValueError(f"Unknown provider: {provider}")

                if self._degraded:
                    try:
                        text = await asyncio.wait_for(coro, timeout=self.DEGRADED_TIMEOUT)
                    except asyncio.TimeoutError:
                        raise httpx.ReadTimeout(
                            f"Degraded mode timeout ({self.DEGRADED_TIMEOUT}s)"
                        )
                else:
                    text = await coro

                self._metrics["successes"] += 1
                self._metrics["total_latency_ms"] += (time.monotonic() - start) * 1000

                if self._consecutive_timeouts > 0:
                    if self._degraded:
                        logger.info(
                            "Provider recovered after %d consecutive timeouts, exiting degraded mode",
                            self._consecutive_timeouts,
                        )
                    self._consecutive_timeouts = 0
                    self._degraded = False
                return text

            except Exception as e:
                last_error = e
                self._metrics["total_latency_ms"] += (time.monotonic() - start) * 1000

                if isinstance(e, httpx.TimeoutException):
                    self._metrics["timeouts"] += 1
                    self._consecutive_timeouts += 1
                    if (self._consecutive_timeouts >= self.DEGRADED_THRESHOLD
                            and not self._degraded):
                        self._degraded = True
                        logger.warning(
                            "Provider %s entered degraded mode after %d consecutive timeouts",
                            provider, self._consecutive_timeouts,
                        )

                if not _is_retryable(e):
                    logger.error("Permanent %s error (no retry): %s", provider, e)
                    self._record_failure(e)
                    raise

                if attempt < max_retries:
                    delay = min(
                        self.INITIAL_BACKOFF * (self.BACKOFF_FACTOR ** attempt),
                        self.MAX_BACKOFF,
                    )
                    self._metrics["retries"] += 1
                    logger.warning(
                        "%s request failed (attempt %d/%d), retrying in %.1fs: %s",
                        provider, attempt + 1, max_retries + 1, delay, e,
                    )
                    await asyncio.sleep(delay)

        self._record_failure(last_error)
        raise last_error

    def _record_failure(self, error: Exception):
        self._metrics["failures"] += 1
        self._metrics["last_error"] = str(error)
        self._metrics["last_error_time"] = time.time()

    def _base_url(self) -> str:
        if self.config.provider == "openai":
            return self.config.openai_url
        if self.config.provider == "lmstudio":
            return self.config.lmstudio_url
        return self.config.groq_url

    async def _call_chat_completions(self, system_prompt: str, user_prompt: str) -> str:
        """Groq / OpenAI / LM Studio: POST {base}/chat/completions."""
        body = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "stream": False,
        }
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        response = await self.client.post(
            f"{self._base_url()}/chat/completions", json=body, headers=headers,
        )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            logger.error("%s error %d: %s", self.config.provider, response.status_code, response.text[:300])
            raise
        data = response.json()
        return data["choices"][0]["message"]["content"] or ""

    async def _call_ollama(self, system_prompt: str, user_prompt: str) -> str:
        """Ollama: POST /api/generate with prompt + system fields."""
        body = {
            "model": self.config.ollama_model,
            "prompt": user_prompt,
            "system": system_prompt,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_tokens,
            },
        }
        response = await self.client.post(f"{self.config.ollama_url}/api/generate", json=body)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            logger.error("Ollama error %d: %s", response.status_code, response.text[:300])
            raise
        return response.json().get("response", "{}")

    # --- Response decoding ---

    def _parse_response(self, raw: str, floor: float, list_key: str) -> list[DetectionCandidate]:
        """Decode the untrusted model payload into validated candidates."""
        cleaned = (raw or "").strip()
        if "<think>" in cleaned and "</think>" in cleaned:
            cleaned = cleaned.split("</think>", 1)[-1].strip()
        if "```" in cleaned:
            cleaned = cleaned.replace("```json", "").replace("```", "").strip()

        try:
            data = json.loads(_extract_first_json(cleaned))
        except json.JSONDecodeError:
            logger.warning("Failed to parse detector JSON: %s", cleaned[:200])
            return []
        if not isinstance(data, dict):
            logger.warning("Detector JSON parsed to non-object; ignoring")
            return []

        items = data.get(list_key)
        if items is None:
            # Some models answer a search with "references" or vice versa
            items = data.get("references") or data.get("results") or []
        if not isinstance(items, list):
            return []

        candidates = []
        seen = set()
        for item in items:
            candidate = self._decode_item(item, floor)
            if candidate is None or candidate.key in seen:
                continue
            seen.add(candidate.key)
            candidates.append(candidate)
        return candidates

    def _decode_item(self, item, floor: float) -> DetectionCandidate | None:
        if not isinstance(item, dict):
            return None
        book = resolve_book(item.get("book"))
        chapter = _as_int(item.get("chapter"))
        verse_start = _as_int(item.get("verseStart", item.get("verse_start")))
        verse_end = _as_int(item.get("verseEnd", item.get("verse_end")))
        if verse_end is not None and (verse_start is None or verse_end == verse_start):
            verse_end = None

        if book is None or chapter is None or not is_valid_reference(
            book, chapter, verse_start, verse_end,
        ):
            self._metrics["rejected_invalid"] += 1
            logger.debug("Dropping invalid model reference: %s", item)
            return None

        confidence = _as_confidence(item.get("confidence"))
        if confidence is None or confidence < floor:
            self._metrics["rejected_low_confidence"] += 1
            return None

        rationale = item.get("reasoning")
        return DetectionCandidate(
            reference=ScriptureReference(
                book=book.name,
                chapter=chapter,
                verse_start=verse_start,
                verse_end=verse_end,
            ),
            confidence=confidence,
            origin="probabilistic",
            rationale=rationale if isinstance(rationale, str) else None,
        )

    async def close(self):
        await self.client.aclose()
