"""External fuzzy lyric → song search (Genius, LRCLib)."""

import logging

import httpx

from versecue.config import LyricSearchConfig
from versecue.models.schemas import Song, SongMatch

logger = logging.getLogger("versecue.lyrics")

MIN_QUERY_CHARS = 5


class LyricSearchClient:
    """Thin clients over the two public lyric search services.

    Both methods raise on network/HTTP failure; the song matcher isolates
    each call and treats a failure as an empty result. A missing Genius
    token or a disabled LRCLib simply returns [].
    """

    def __init__(self, config: LyricSearchConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=3.0,
                read=config.timeout_seconds,
                write=3.0,
                pool=3.0,
            )
        )

    @property
    def genius_enabled(self) -> bool:
        return bool(self.config.genius_token)

    async def search_genius(self, query: str, limit: int = 10) -> list[SongMatch]:
        """Genius full-text search: hits[].result.{id,title,primary_artist.name}."""
        query = (query or "").strip()
        if not self.genius_enabled or len(query) < MIN_QUERY_CHARS:
            return []

        response = await self.client.get(
            self.config.genius_url,
            params={"q": query, "per_page": limit},
            headers={"Authorization": f"Bearer {self.config.genius_token}"},
        )
        response.raise_for_status()
        hits = (response.json().get("response") or {}).get("hits") or []

        matches = []
        for hit in hits[:limit]:
            result = hit.get("result") if isinstance(hit, dict) else None
            if not isinstance(result, dict):
                continue
            title = result.get("title") or result.get("full_title")
            if not title or result.get("id") is None:
                continue
            artist = (result.get("primary_artist") or {}).get("name") or "Unknown"
            matches.append(SongMatch(
                song=Song(id=f"genius_{result['id']}", title=title, artist=artist, source="genius"),
                confidence=self.config.genius_confidence,
                source="genius",
                strategy="genius",
            ))
        logger.debug("Genius: %d hits for %r", len(matches), query[:50])
        return matches

    async def search_lrclib(self, query: str, limit: int = 3) -> list[SongMatch]:
        """LRCLib search: [{id, trackName, artistName, plainLyrics}]."""
        query = (query or "").strip()
        if not self.config.lrclib_enabled or len(query) < MIN_QUERY_CHARS:
            return []

        response = await self.client.get(self.config.lrclib_url, params={"q": query})
        response.raise_for_status()
        items = response.json()
        if not isinstance(items, list):
            return []

        matches = []
        for item in items[:limit]:
            if not isinstance(item, dict) or not item.get("trackName") or item.get("id") is None:
                continue
            matches.append(SongMatch(
                song=Song(
                    id=f"lrclib_{item['id']}",
                    title=item["trackName"],
                    artist=item.get("artistName") or "",
                    lyrics=item.get("plainLyrics"),
                    source="lrclib",
                ),
                confidence=self.config.lrclib_confidence,
                source="lrclib",
                strategy="lrclib",
            ))
        logger.debug("LRCLib: %d hits for %r", len(matches), query[:50])
        return matches

    async def close(self):
        await self.client.aclose()
