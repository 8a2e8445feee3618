"""Song library: organization-scoped title and lyric containment search."""

import json
import logging
import re
import uuid
from pathlib import Path

from versecue.db.database import get_db
from versecue.models.schemas import Song

logger = logging.getLogger("versecue.library")

# Reverse containment ("snippet contains the title") needs a real title
MIN_REVERSE_TITLE_CHARS = 4


def normalize_search_text(text: str | None) -> str:
    """Lowercase, punctuation to spaces, collapse whitespace."""
    if not text:
        return ""
    cleaned = re.sub(r"[^\w\s]|_", " ", text.lower())
    return " ".join(cleaned.split())


def _row_to_song(row) -> Song:
    return Song(
        id=row["id"],
        title=row["title"],
        artist=row["artist"] or "",
        lyrics=row["lyrics"],
        source="local",
    )


class SongLibrary:
    """Read-only query interface over one organization's songs.

    Error contract:
    - Search methods return [] for queries that normalize to nothing.
    - DB errors propagate; the song matcher isolates each strategy.
    - add_song/load_from_json exist to seed the library at start-up only.
    """

    def __init__(self, organization_id: str = "default"):
        self.organization_id = organization_id

    async def search_title(self, query: str, limit: int = 10) -> list[Song]:
        """Songs whose title contains the query, or whose title the query contains."""
        q = normalize_search_text(query)
        if len(q) < 2:
            return []
        db = await get_db()
        rows = await db.execute_fetchall(
            """SELECT id, title, artist, lyrics FROM songs
               WHERE organization_id = ?
                 AND (title_search LIKE ?
                      OR (length(title_search) >= ? AND instr(?, title_search) > 0))
               ORDER BY length(title_search) DESC
               LIMIT ?""",
            (self.organization_id, f"%{q}%", MIN_REVERSE_TITLE_CHARS, q, limit),
        )
        return [_row_to_song(r) for r in rows]

    async def search_lyrics(self, phrase: str, limit: int = 10) -> list[Song]:
        """Songs whose lyrics contain the phrase."""
        q = normalize_search_text(phrase)
        if len(q) < 2:
            return []
        db = await get_db()
        rows = await db.execute_fetchall(
            """SELECT id, title, artist, lyrics FROM songs
               WHERE organization_id = ? AND lyrics_search LIKE ?
               LIMIT ?""",
            (self.organization_id, f"%{q}%", limit),
        )
        return [_row_to_song(r) for r in rows]

    async def search_lyrics_all_words(self, words: list[str], limit: int = 10) -> list[Song]:
        """Songs whose lyrics contain every one of the words."""
        terms = [t for t in (normalize_search_text(w) for w in words) if t]
        if not terms:
            return []
        clauses = " AND ".join("lyrics_search LIKE ?" for _ in terms)
        db = await get_db()
        rows = await db.execute_fetchall(
            f"""SELECT id, title, artist, lyrics FROM songs
                WHERE organization_id = ? AND {clauses}
                LIMIT ?""",
            (self.organization_id, *(f"%{t}%" for t in terms), limit),
        )
        return [_row_to_song(r) for r in rows]

    async def get(self, song_id: str) -> Song | None:
        db = await get_db()
        rows = await db.execute_fetchall(
            "SELECT id, title, artist, lyrics FROM songs WHERE id = ? AND organization_id = ?",
            (song_id, self.organization_id),
        )
        return _row_to_song(rows[0]) if rows else None

    async def count(self) -> int:
        db = await get_db()
        rows = await db.execute_fetchall(
            "SELECT COUNT(*) FROM songs WHERE organization_id = ?", (self.organization_id,)
        )
        return rows[0][0] if rows else 0

    # --- Seeding ---

    async def add_song(
        self, title: str, artist: str = "", lyrics: str | None = None, song_id: str | None = None,
    ) -> Song:
        db = await get_db()
        song_id = song_id or uuid.uuid4().hex[:12]
        await db.execute(
            """INSERT OR REPLACE INTO songs
               (id, organization_id, title, artist, lyrics, source, title_search, lyrics_search)
               VALUES (?, ?, ?, ?, ?, 'local', ?, ?)""",
            (
                song_id,
                self.organization_id,
                title,
                artist,
                lyrics,
                normalize_search_text(title),
                normalize_search_text(lyrics),
            ),
        )
        await db.commit()
        return Song(id=song_id, title=title, artist=artist, lyrics=lyrics, source="local")

    async def load_from_json(self, path: Path) -> int:
        """Load [{"title", "artist", "lyrics", "id"?}, ...]. Skips malformed entries."""
        if not path.exists():
            return 0
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        loaded = 0
        for entry in data if isinstance(data, list) else []:
            if not isinstance(entry, dict):
                continue
            title = entry.get("title")
            if not isinstance(title, str) or not title.strip():
                logger.debug("Skipping song entry without a usable title: %r", entry)
                continue
            artist, lyrics, song_id = entry.get("artist"), entry.get("lyrics"), entry.get("id")
            await self.add_song(
                title=title.strip(),
                artist=artist if isinstance(artist, str) else "",
                lyrics=lyrics if isinstance(lyrics, str) else None,
                song_id=str(song_id) if song_id not in (None, "") else None,
            )
            loaded += 1
        logger.info("Loaded %d songs from %s", loaded, path.name)
        return loaded
