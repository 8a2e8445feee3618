"""Data schemas for VerseCue."""

from pydantic import BaseModel, ConfigDict, Field, computed_field
from datetime import datetime, UTC
from typing import Literal, Optional


# --- Scripture ---

class ScriptureReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    book: str  # canonical name, "1 Corinthians"
    chapter: int
    verse_start: Optional[int] = None
    verse_end: Optional[int] = None  # only set when > verse_start

    @computed_field
    @property
    def display(self) -> str:
        """Rendered citation, e.g. "Romans 8:28-30"."""
        text = f"{self.book} {self.chapter}"
        if self.verse_start is not None:
            text += f":{self.verse_start}"
            if self.verse_end is not None:
                text += f"-{self.verse_end}"
        return text

    @property
    def key(self) -> str:
        """Identity used for deduplication and cooldown."""
        vs = self.verse_start if self.verse_start is not None else ""
        ve = self.verse_end if self.verse_end is not None else ""
        return f"{self.book.lower()}|{self.chapter}|{vs}|{ve}"


class DetectionCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    reference: ScriptureReference
    confidence: float = Field(ge=0.0, le=1.0)
    origin: Literal["deterministic", "probabilistic"]
    rationale: Optional[str] = None  # probabilistic only
    matched_text: Optional[str] = None

    @property
    def key(self) -> str:
        return self.reference.key


# --- Songs ---

class Song(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    artist: str = ""
    lyrics: Optional[str] = None
    source: str = "local"  # "local", "genius", "lrclib"


class SongMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    song: Song
    confidence: float = Field(ge=0.0, le=1.0)
    source: str  # where the match came from, same tags as Song.source
    strategy: str = ""  # "title", "phrase", "first_words", "distinctive", "genius", "lrclib"

    @property
    def is_local(self) -> bool:
        return self.source == "local"


RecordingStatus = Literal["idle", "recording", "transcribing", "searching", "complete", "error"]


class RecordingState(BaseModel):
    """Snapshot of the press-to-identify flow."""
    status: RecordingStatus = "idle"
    elapsed_seconds: float = 0.0
    audio_bytes: int = 0
    transcript: Optional[str] = None
    matches: list[SongMatch] = []
    error: Optional[str] = None


# --- Review Queue ---

QueueState = Literal["pending", "approved", "displayed", "dismissed"]


class QueueItem(BaseModel):
    id: str
    seq: int  # arrival order
    kind: Literal["scripture", "song"] = "scripture"
    state: QueueState = "pending"
    candidate: Optional[DetectionCandidate] = None
    song_match: Optional[SongMatch] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    approved_at: Optional[datetime] = None
    displayed_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    resolved_text: Optional[str] = None
    translation: Optional[str] = None

    @property
    def confidence(self) -> float:
        if self.candidate is not None:
            return self.candidate.confidence
        if self.song_match is not None:
            return self.song_match.confidence
        return 0.0

    @property
    def label(self) -> str:
        if self.candidate is not None:
            return self.candidate.reference.display
        if self.song_match is not None:
            song = self.song_match.song
            return f"{song.title} — {song.artist}" if song.artist else song.title
        return self.id


class QueueStats(BaseModel):
    detected: int = 0
    approved: int = 0
    displayed: int = 0
    dismissed: int = 0


class DisplayPayload(BaseModel):
    """What the public display surface receives on each display transition."""
    type: Literal["scripture", "song"]
    item_id: str
    reference: Optional[str] = None
    song: Optional[Song] = None
    resolved_text: Optional[str] = None
    translation: Optional[str] = None
    displayed_at: datetime


# --- Transcript ---

class TranscriptFragment(BaseModel):
    text: str
    is_final: bool = True
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# --- REST request bodies ---

class FragmentRequest(BaseModel):
    text: str
    is_final: bool = True


class DetectRequest(BaseModel):
    text: str
    use_llm: bool = True


class ScriptureSearchRequest(BaseModel):
    query: str


class QueueSettingsUpdate(BaseModel):
    auto_approve: Optional[bool] = None
    auto_approve_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    translation: Optional[str] = None


class SongSearchRequest(BaseModel):
    text: str


class EnqueueSongRequest(BaseModel):
    match: SongMatch


# --- WebSocket Messages ---

class WSControlMessage(BaseModel):
    """Client → Server: operator commands on /ws/session."""
    type: str  # "fragment", "approve", "dismiss", "display", "display_next", "remove"
    data: dict = {}


class WSQueueUpdate(BaseModel):
    """Server → Client: an item changed state."""
    type: str = "queue_update"
    item: QueueItem
    stats: QueueStats


class WSTranscriptUpdate(BaseModel):
    """Server → Client: transcript text for passive display."""
    type: str = "transcript"
    final_text: str
    interim_text: str = ""
