"""Shared pytest fixtures for VerseCue tests."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from versecue.config import (
    AppConfig,
    BibleTextConfig,
    DetectionConfig,
    LyricSearchConfig,
    QueueConfig,
    SongMatchConfig,
    TranscriptionConfig,
)
from versecue.db.database import init_db, close_db
from versecue.models.schemas import DetectionCandidate, ScriptureReference, Song, SongMatch


def make_response(payload=None, status_code: int = 200, text: str = ""):
    """A MagicMock shaped like an httpx.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = text or (json.dumps(payload) if payload is not None else "")
    if status_code >= 400:
        request = httpx.Request("POST", "http://test")
        real = httpx.Response(status_code, request=request)
        response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=real)
        )
    else:
        response.raise_for_status = MagicMock()
    return response


def chat_response(content) -> MagicMock:
    """Chat-completions response whose message content is `content` (dict → JSON)."""
    if not isinstance(content, str):
        content = json.dumps(content)
    return make_response({"choices": [{"message": {"content": content}}]})


def candidate(book: str, chapter: int, vs=None, ve=None, confidence: float = 1.0,
              origin: str = "deterministic") -> DetectionCandidate:
    return DetectionCandidate(
        reference=ScriptureReference(book=book, chapter=chapter, verse_start=vs, verse_end=ve),
        confidence=confidence,
        origin=origin,
    )


def song_match(title: str, artist: str = "", source: str = "local", confidence: float = 1.0,
               strategy: str = "title", lyrics: str | None = None) -> SongMatch:
    return SongMatch(
        song=Song(id=f"{source}_{title.lower().replace(' ', '_')}", title=title, artist=artist,
                  lyrics=lyrics, source=source),
        confidence=confidence,
        source=source,
        strategy=strategy,
    )


@pytest.fixture
def detection_config():
    """Groq-style detection config with a key so the detector is enabled."""
    return DetectionConfig(
        provider="groq",
        groq_api_key="test-key",
        groq_model="test-model",
        timeout_seconds=5.0,
        confidence_floor=0.80,
        search_confidence_floor=0.75,
        min_fragment_chars=20,
    )


@pytest.fixture
def app_config(tmp_path, detection_config):
    return AppConfig(
        data_dir=tmp_path,
        db_path=tmp_path / "test.db",
        detection=detection_config,
        queue=QueueConfig(cooldown_seconds=60.0),
        transcription=TranscriptionConfig(api_key="test-key"),
        lyric_search=LyricSearchConfig(genius_token="test-token"),
        song_match=SongMatchConfig(auto_stop_seconds=None, strategy_timeout_seconds=0.5),
        bible_text=BibleTextConfig(),
    )


@pytest.fixture
def mock_httpx_client():
    """Mock httpx.AsyncClient; tests set .post/.get return values."""
    client = AsyncMock(spec=httpx.AsyncClient)
    client.post = AsyncMock(return_value=chat_response({"references": []}))
    client.get = AsyncMock(return_value=make_response({}))
    return client


@pytest.fixture
async def db(tmp_path):
    """Initialize a fresh database for each test, tear down after."""
    conn = await init_db(tmp_path / "test.db")
    yield conn
    await close_db()


@pytest.fixture
def sample_songs_json(tmp_path):
    """A songs/*.json seed file with three worship songs."""
    data = [
        {
            "id": "amazing-grace",
            "title": "Amazing Grace",
            "artist": "John Newton",
            "lyrics": "Amazing grace how sweet the sound that saved a wretch like me. "
                      "I once was lost but now am found, was blind but now I see.",
        },
        {
            "id": "way-maker",
            "title": "Way Maker",
            "artist": "Sinach",
            "lyrics": "You are here moving in our midst, I worship you, I worship you. "
                      "Way maker, miracle worker, promise keeper, light in the darkness.",
        },
        {
            "id": "goodness-of-god",
            "title": "Goodness of God",
            "artist": "Bethel Music",
            "lyrics": "I love you Lord, oh your mercy never fails me. "
                      "All my days I've been held in your hands.",
        },
    ]
    path = tmp_path / "songs.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)
    return path
