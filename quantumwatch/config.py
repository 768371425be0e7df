"""Configuration loading: built-in defaults, YAML file, environment overrides."""
import copy
import os
from pathlib import Path

import yaml

from quantumwatch.errors import ConfigError

DEFAULT_CONFIG = {
    "database": {"url": "sqlite:///data/quantumwatch.db"},
    "http": {"timeout": 30, "user_agent": "QuantumWatch/1.0"},
    "schedule": {
        "ingest": "0 * * * *",
        "summarize": "0 */3 * * *",
        "synthesize": "0 */6 * * *",
        "notify": "30 * * * *",
        "run_on_startup": ["ingest"],
        "poll_seconds": 20,
    },
    "pipeline": {"lock_timeout_minutes": 60},
    "summarize": {"batch_size": 10, "delay_seconds": 0.5},
    "synthesize": {"batch_size": 5, "delay_seconds": 1.0},
    "notify": {
        "batch_size": 5,
        "message_delay_seconds": 1.0,
        "audio_delay_seconds": 2.0,
    },
    "llm": {
        "api_key": "",
        "model": "gemini-2.0-flash",
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
    },
    "tts": {
        "api_key": "",
        "base_url": "https://api.elevenlabs.io/v1/text-to-speech",
        "model_id": "eleven_multilingual_v2",
        "stability": 0.5,
        "similarity_boost": 0.75,
        "timeout": 120,
        "default_language": "en",
        "voices": {
            "en": "pNInz6obpgDQGcFmaJgB",
            "fr": "EXAVITQu4vr4xnSDxMaL",
        },
    },
    "telegram": {
        "bot_token": "",
        "chat_id": "",
        "api_url": "https://api.telegram.org",
        "max_message_length": 4000,
        "max_caption_length": 1024,
    },
    "storage": {"public_root": "public", "podcasts_dir": "podcasts"},
    "logging": {"retention_days": 30, "level": "INFO"},
    "display": {"timezone": "UTC"},
}

# Environment variable -> (section, key, type)
ENV_OVERRIDES = {
    "DATABASE_URL": ("database", "url", str),
    "RSS_FETCH_CRON": ("schedule", "ingest", str),
    "AI_SUMMARY_CRON": ("schedule", "summarize", str),
    "PODCAST_GEN_CRON": ("schedule", "synthesize", str),
    "TELEGRAM_CRON": ("schedule", "notify", str),
    "AI_SUMMARY_BATCH_SIZE": ("summarize", "batch_size", int),
    "PODCAST_GEN_BATCH_SIZE": ("synthesize", "batch_size", int),
    "TELEGRAM_BATCH_SIZE": ("notify", "batch_size", int),
    "GEMINI_API_KEY": ("llm", "api_key", str),
    "GEMINI_MODEL": ("llm", "model", str),
    "ELEVENLABS_API_KEY": ("tts", "api_key", str),
    "TELEGRAM_BOT_TOKEN": ("telegram", "bot_token", str),
    "TELEGRAM_CHAT_ID": ("telegram", "chat_id", str),
    "PUBLIC_ROOT": ("storage", "public_root", str),
    "PODCASTS_DIR": ("storage", "podcasts_dir", str),
    "LOG_LEVEL": ("logging", "level", str),
    "DISPLAY_TIMEZONE": ("display", "timezone", str),
}

VOICE_ENV = {
    "ELEVENLABS_EN_VOICE_ID": "en",
    "ELEVENLABS_FR_VOICE_ID": "fr",
}


def get_project_dir() -> Path:
    """Return the repository root (parent of the package directory)."""
    return Path(__file__).parent.parent


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env(config: dict, environ: dict) -> dict:
    for name, (section, key, cast) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        try:
            config[section][key] = cast(raw)
        except ValueError:
            raise ConfigError(f"{name} must be {cast.__name__}, got {raw!r}")

    for name, language in VOICE_ENV.items():
        if environ.get(name):
            config["tts"]["voices"][language] = environ[name]
    return config


def load_config(path: Path | None = None, environ: dict | None = None) -> dict:
    """Load configuration.

    Args:
        path: YAML file to read. Defaults to $QUANTUMWATCH_CONFIG, then
            config/config.yaml under the project directory. A missing file
            is not an error.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Nested configuration dict, defaults filled in
    """
    environ = os.environ if environ is None else environ

    if path is None:
        env_path = environ.get("QUANTUMWATCH_CONFIG")
        path = Path(env_path) if env_path else get_project_dir() / "config" / "config.yaml"

    config = copy.deepcopy(DEFAULT_CONFIG)
    if path.exists():
        try:
            file_config = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        if not isinstance(file_config, dict):
            raise ConfigError(f"{path} must contain a mapping")
        config = _deep_merge(config, file_config)

    return _apply_env(config, environ)


def get_database_path(config: dict) -> Path:
    """Resolve database.url (``sqlite:///path`` or a bare path) to a file path.

    Relative paths are resolved against the project directory.
    """
    url = config["database"]["url"]
    if url.startswith("sqlite:///"):
        url = url[len("sqlite:///"):]
    elif "://" in url:
        raise ConfigError(f"Unsupported database URL: {url}")

    db_path = Path(url)
    if not db_path.is_absolute():
        db_path = get_project_dir() / db_path
    return db_path


def get_public_root(config: dict) -> Path:
    """Directory served publicly; podcast URL paths are relative to it."""
    public_root = Path(config["storage"]["public_root"])
    if not public_root.is_absolute():
        public_root = get_project_dir() / public_root
    return public_root


def get_audio_root(config: dict) -> Path:
    """Directory holding generated podcast files."""
    return get_public_root(config) / config["storage"]["podcasts_dir"]
