"""VerseCue configuration, all settings in one place."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env from the project root (one level up from versecue/)
load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger("versecue.config")


class DetectionConfig(BaseModel):
    """Language-model scripture detection settings."""
    # Active provider: "groq", "openai", "lmstudio" (OpenAI-compatible) or "ollama"
    provider: str = "groq"

    groq_url: str = "https://api.groq.com/openai/v1"
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"

    openai_url: str = "https://api.openai.com/v1"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    lmstudio_url: str = "http://localhost:1234/v1"
    lmstudio_model: str = ""

    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "qwen3:4b"

    enabled: bool = True
    temperature: float = 0.2
    max_tokens: int = 1024
    timeout_seconds: float = 8.0

    # Product tuning constants: precision wins over recall
    confidence_floor: float = 0.80
    search_confidence_floor: float = 0.75
    min_fragment_chars: int = 20
    # Only call the model when the fragment mentions a biblical keyword
    require_trigger_keywords: bool = False

    @property
    def model(self) -> str:
        """Return the active model name for the current provider."""
        if self.provider == "openai":
            return self.openai_model
        elif self.provider == "lmstudio":
            return self.lmstudio_model
        elif self.provider == "ollama":
            return self.ollama_model
        return self.groq_model

    @property
    def api_key(self) -> str:
        if self.provider == "openai":
            return self.openai_api_key
        if self.provider == "groq":
            return self.groq_api_key
        return ""

    @property
    def is_configured(self) -> bool:
        """Cloud providers need a key; local providers only need to be enabled."""
        if not self.enabled:
            return False
        if self.provider in ("groq", "openai"):
            return bool(self.api_key)
        return True


class QueueConfig(BaseModel):
    """Review queue defaults."""
    auto_approve: bool = False
    auto_approve_threshold: float = 0.95
    # Seconds during which a reference already queued is not queued again (0 disables)
    cooldown_seconds: float = 60.0
    default_translation: str = "KJV"


class TranscriptionConfig(BaseModel):
    """External speech-to-text service used for song snippets."""
    url: str = "https://api.groq.com/openai/v1/audio/transcriptions"
    api_key: str = ""
    model: str = "whisper-large-v3"
    language: str = "en"
    timeout_seconds: float = 20.0


class LyricSearchConfig(BaseModel):
    """External fuzzy lyric search services."""
    genius_url: str = "https://api.genius.com/search"
    genius_token: str = ""
    genius_confidence: float = 0.9
    lrclib_url: str = "https://lrclib.net/api/search"
    lrclib_enabled: bool = True
    lrclib_confidence: float = 0.8
    timeout_seconds: float = 5.0


class SongMatchConfig(BaseModel):
    """Press-to-identify song matching settings."""
    auto_stop_seconds: float | None = 10.0  # None = manual stop only
    min_audio_bytes: int = 1000
    min_transcript_chars: int = 10
    max_results: int = 8
    first_words: int = 6
    max_phrase_chars: int = 50
    min_phrase_chars: int = 10
    min_distinctive_word_len: int = 4
    max_distinctive_words: int = 5
    strategy_timeout_seconds: float = 1.5
    local_confidence: float = 1.0


class BibleTextConfig(BaseModel):
    """Scripture text lookup for the display surface."""
    url: str = "https://bible-api.com"
    enabled: bool = True
    timeout_seconds: float = 5.0


class AppConfig(BaseModel):
    """Root configuration."""
    host: str = "0.0.0.0"
    port: int = 8003
    data_dir: Path = Path("data")
    db_path: Path = Path("data/versecue.db")
    organization_id: str = "default"

    detection: DetectionConfig = DetectionConfig()
    queue: QueueConfig = QueueConfig()
    transcription: TranscriptionConfig = TranscriptionConfig()
    lyric_search: LyricSearchConfig = LyricSearchConfig()
    song_match: SongMatchConfig = SongMatchConfig()
    bible_text: BibleTextConfig = BibleTextConfig()


def _truthy(value: str) -> bool:
    return value.lower() in ("1", "true", "yes", "on")


def load_config() -> AppConfig:
    """Load config with environment variable overrides."""
    config = AppConfig()

    # Environment overrides
    if provider := os.getenv("LLM_PROVIDER"):
        if provider in ("groq", "openai", "lmstudio", "ollama"):
            config.detection.provider = provider
    if key := os.getenv("GROQ_API_KEY"):
        config.detection.groq_api_key = key
        config.transcription.api_key = key
    if model := os.getenv("GROQ_MODEL"):
        config.detection.groq_model = model
    if key := os.getenv("OPENAI_API_KEY"):
        config.detection.openai_api_key = key
    if model := os.getenv("OPENAI_MODEL"):
        config.detection.openai_model = model
    if url := os.getenv("LMSTUDIO_URL"):
        config.detection.lmstudio_url = url
    if model := os.getenv("LMSTUDIO_MODEL"):
        config.detection.lmstudio_model = model
    if url := os.getenv("OLLAMA_URL"):
        config.detection.ollama_url = url
    if model := os.getenv("OLLAMA_MODEL"):
        config.detection.ollama_model = model
    if enabled := os.getenv("LLM_DETECTION_ENABLED"):
        config.detection.enabled = _truthy(enabled)
    if floor := os.getenv("DETECTION_CONFIDENCE_FLOOR"):
        config.detection.confidence_floor = float(floor)
    if floor := os.getenv("SEARCH_CONFIDENCE_FLOOR"):
        config.detection.search_confidence_floor = float(floor)
    if triggers := os.getenv("REQUIRE_TRIGGER_KEYWORDS"):
        config.detection.require_trigger_keywords = _truthy(triggers)

    if auto := os.getenv("AUTO_APPROVE"):
        config.queue.auto_approve = _truthy(auto)
    if threshold := os.getenv("AUTO_APPROVE_THRESHOLD"):
        config.queue.auto_approve_threshold = float(threshold)
    if cooldown := os.getenv("DETECTION_COOLDOWN_SECONDS"):
        config.queue.cooldown_seconds = float(cooldown)
    if translation := os.getenv("DEFAULT_TRANSLATION"):
        config.queue.default_translation = translation.upper()

    if key := os.getenv("TRANSCRIPTION_API_KEY"):
        config.transcription.api_key = key
    if model := os.getenv("TRANSCRIPTION_MODEL"):
        config.transcription.model = model
    if token := os.getenv("GENIUS_ACCESS_TOKEN"):
        config.lyric_search.genius_token = token
    if lrclib := os.getenv("LRCLIB_ENABLED"):
        config.lyric_search.lrclib_enabled = _truthy(lrclib)

    if seconds := os.getenv("SONG_AUTO_STOP_SECONDS"):
        value = float(seconds)
        config.song_match.auto_stop_seconds = value if value > 0 else None
    if url := os.getenv("BIBLE_TEXT_URL"):
        config.bible_text.url = url

    if org := os.getenv("ORGANIZATION_ID"):
        config.organization_id = org
    if db := os.getenv("DB_PATH"):
        config.db_path = Path(db)
    if data := os.getenv("DATA_DIR"):
        config.data_dir = Path(data)

    # Validate critical config
    if not config.detection.is_configured:
        logger.warning(
            "No API key for %s; language-model detection disabled",
            config.detection.provider,
        )
    if not config.transcription.api_key:
        logger.warning("TRANSCRIPTION_API_KEY/GROQ_API_KEY not set; song identification will fail")
    if not config.lyric_search.genius_token:
        logger.warning("GENIUS_ACCESS_TOKEN not set; external lyric title search disabled")

    # Ensure data directories exist
    config.data_dir.mkdir(parents=True, exist_ok=True)
    (config.data_dir / "songs").mkdir(exist_ok=True)

    return config
