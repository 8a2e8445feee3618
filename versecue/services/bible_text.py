"""Scripture body lookup for the display surface (bible-api.com)."""

import logging
from urllib.parse import quote

import httpx

from versecue.config import BibleTextConfig
from versecue.models.schemas import ScriptureReference

logger = logging.getLogger("versecue.bible_text")


class BibleTextClient:
    """Fetches verse text once per (reference, translation) and caches it.

    Lookups never raise: an unknown passage, a network error or a disabled
    client all give None, and the display push goes out without text.
    """

    def __init__(self, config: BibleTextConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=3.0,
                read=config.timeout_seconds,
                write=3.0,
                pool=3.0,
            )
        )
        self._cache: dict[tuple[str, str], str] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    async def fetch_text(self, reference: ScriptureReference, translation: str = "KJV") -> str | None:
        if not self.config.enabled:
            return None
        key = (reference.display, translation.upper())
        if key in self._cache:
            return self._cache[key]

        url = f"{self.config.url}/{quote(reference.display)}"
        try:
            response = await self.client.get(
                url,
                params={"translation": translation.lower()},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Verse lookup failed for %s (%s): %s", reference.display, translation, e)
            return None

        if not isinstance(data, dict) or data.get("error"):
            logger.warning("Verse lookup returned no text for %s", reference.display)
            return None
        text = (data.get("text") or "").strip()
        if not text:
            return None
        text = " ".join(text.split())
        self._cache[key] = text
        return text

    async def close(self):
        await self.client.aclose()
