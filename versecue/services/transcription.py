"""Speech-to-text for short song snippets (Groq Whisper, OpenAI-compatible)."""

import logging

import httpx

from versecue.config import TranscriptionConfig

logger = logging.getLogger("versecue.transcription")


class TranscriptionError(Exception):
    """The snippet could not be transcribed."""


class TranscriptionClient:
    """Uploads an audio snippet and returns its text.

    Error contract: transcribe() raises TranscriptionError for every failure
    (missing key, HTTP error, timeout, bad payload). The song matcher turns
    that into a user-visible error state.
    """

    def __init__(self, config: TranscriptionConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=5.0,
                read=config.timeout_seconds,
                write=10.0,
                pool=5.0,
            )
        )

    @property
    def enabled(self) -> bool:
        return bool(self.config.api_key)

    async def transcribe(
        self, audio: bytes, filename: str = "audio.webm", content_type: str = "audio/webm",
    ) -> str:
        if not self.enabled:
            raise TranscriptionError("Transcription service not configured")

        files = {"file": (filename, audio, content_type)}
        data = {
            "model": self.config.model,
            "language": self.config.language,
            "response_format": "json",
        }
        headers = {"Authorization": f"Bearer {self.config.api_key}"}

        try:
            response = await self.client.post(self.config.url, files=files, data=data, headers=headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("Transcription error %d: %s", e.response.status_code, e.response.text[:300])
            raise TranscriptionError(f"Transcription failed ({e.response.status_code})") from e
        except httpx.HTTPError as e:
            logger.warning("Transcription request failed: %s", e)
            raise TranscriptionError("Transcription service unreachable") from e
        except ValueError as e:
            raise TranscriptionError("Transcription returned invalid JSON") from e

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise TranscriptionError("Transcription returned no text")
        logger.info("Transcribed %d bytes -> %r", len(audio), text[:80])
        return text.strip()

    async def close(self):
        await self.client.aclose()
