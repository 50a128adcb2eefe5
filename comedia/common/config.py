"""
Configuration Management for Comedia Agents

Loads configuration from ~/.comedia/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger("comedia.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".comedia"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOGS_DIR = CONFIG_DIR / "logs"
TASKS_PATH = CONFIG_DIR / "tasks.json"


@dataclass
class LLMConfig:
    """Text-generation providers (primary plus one optional fallback)"""
    provider: str = "google"
    fallback_provider: str = "anthropic"  # "" disables the fallback
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash-lite-001"
    timeout_seconds: float = 30.0
    max_tokens: int = 2048


@dataclass
class CaptureConfig:
    """Capture buffer flush thresholds (seconds)"""
    periodic_interval: float = 30.0
    slow_poll_interval: float = 120.0
    silence_timeout: float = 5.0


@dataclass
class ExtractionConfig:
    confidence_floor: int = 40
    similarity_threshold: float = 85.0
    boost_confidence: bool = False  # apply context boosts before storing


@dataclass
class RecurrenceConfig:
    scan_interval: float = 60.0
    default_recurrence_days: int = 7


@dataclass
class StoreConfig:
    path: str = str(TASKS_PATH)


@dataclass
class ServerConfig:
    port: int = 8080
    slack_signing_secret: str = ""


@dataclass
class ComediaConfig:
    """Main Comedia configuration"""
    llm: LLMConfig = field(default_factory=LLMConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    recurrence: RecurrenceConfig = field(default_factory=RecurrenceConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    defaults = LLMConfig()
    return LLMConfig(
        provider=llm_data.get("provider", defaults.provider),
        fallback_provider=llm_data.get("fallback_provider", defaults.fallback_provider),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", defaults.anthropic_model),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", defaults.openai_model),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", defaults.google_model),
        timeout_seconds=float(llm_data.get("timeout_seconds", defaults.timeout_seconds)),
        max_tokens=int(llm_data.get("max_tokens", defaults.max_tokens)),
    )


def _parse_capture_config(data: dict) -> CaptureConfig:
    """Parse capture section from config dict"""
    capture_data = data.get("capture", {})
    return CaptureConfig(
        periodic_interval=float(capture_data.get("periodic_interval", 30.0)),
        slow_poll_interval=float(capture_data.get("slow_poll_interval", 120.0)),
        silence_timeout=float(capture_data.get("silence_timeout", 5.0)),
    )


def _parse_extraction_config(data: dict) -> ExtractionConfig:
    extraction_data = data.get("extraction", {})
    return ExtractionConfig(
        confidence_floor=int(extraction_data.get("confidence_floor", 40)),
        similarity_threshold=float(extraction_data.get("similarity_threshold", 85.0)),
        boost_confidence=bool(extraction_data.get("boost_confidence", False)),
    )


def _parse_recurrence_config(data: dict) -> RecurrenceConfig:
    recurrence_data = data.get("recurrence", {})
    return RecurrenceConfig(
        scan_interval=float(recurrence_data.get("scan_interval", 60.0)),
        default_recurrence_days=int(recurrence_data.get("default_recurrence_days", 7)),
    )


def _parse_store_config(data: dict) -> StoreConfig:
    store_data = data.get("store", {})
    return StoreConfig(path=store_data.get("path", str(TASKS_PATH)))


def _parse_server_config(data: dict) -> ServerConfig:
    server_data = data.get("server", {})
    return ServerConfig(
        port=int(server_data.get("port", 8080)),
        slack_signing_secret=server_data.get("slack_signing_secret", ""),
    )


def load_config() -> ComediaConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.comedia/config.json)
    3. Default values
    """
    config = ComediaConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.llm = _parse_llm_config(data)
            config.capture = _parse_capture_config(data)
            config.extraction = _parse_extraction_config(data)
            config.recurrence = _parse_recurrence_config(data)
            config.store = _parse_store_config(data)
            config.server = _parse_server_config(data)
        except (json.JSONDecodeError, IOError, ValueError) as e:
            logger.warning("Failed to load config file: %s", e)

    # Environment variable overrides
    if os.getenv("COMEDIA_PORT"):
        config.server.port = int(os.getenv("COMEDIA_PORT"))
    if os.getenv("SLACK_SIGNING_SECRET"):
        config.server.slack_signing_secret = os.getenv("SLACK_SIGNING_SECRET")
    if os.getenv("COMEDIA_STORE_PATH"):
        config.store.path = os.getenv("COMEDIA_STORE_PATH")
    if os.getenv("COMEDIA_LLM_TIMEOUT"):
        config.llm.timeout_seconds = float(os.getenv("COMEDIA_LLM_TIMEOUT"))
    if os.getenv("COMEDIA_SILENCE_TIMEOUT"):
        config.capture.silence_timeout = float(os.getenv("COMEDIA_SILENCE_TIMEOUT"))
    if os.getenv("COMEDIA_FLUSH_INTERVAL"):
        config.capture.periodic_interval = float(os.getenv("COMEDIA_FLUSH_INTERVAL"))

    # LLM env var overrides (track env-sourced keys so they are never saved)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "COMEDIA_LLM_PROVIDER": "provider",
        "COMEDIA_FALLBACK_PROVIDER": "fallback_provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    return config


def save_config(config: ComediaConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    _llm_api_key_fields = {
        "anthropic_api_key", "openai_api_key", "google_api_key",
    }
    llm_section = {
        "provider": config.llm.provider,
        "fallback_provider": config.llm.fallback_provider,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "google_api_key": config.llm.google_api_key,
        "google_model": config.llm.google_model,
        "timeout_seconds": config.llm.timeout_seconds,
        "max_tokens": config.llm.max_tokens,
    }
    for key in _llm_api_key_fields:
        if key in env_sourced:
            llm_section[key] = ""

    data = {
        "llm": llm_section,
        "capture": {
            "periodic_interval": config.capture.periodic_interval,
            "slow_poll_interval": config.capture.slow_poll_interval,
            "silence_timeout": config.capture.silence_timeout,
        },
        "extraction": {
            "confidence_floor": config.extraction.confidence_floor,
            "similarity_threshold": config.extraction.similarity_threshold,
            "boost_confidence": config.extraction.boost_confidence,
        },
        "recurrence": {
            "scan_interval": config.recurrence.scan_interval,
            "default_recurrence_days": config.recurrence.default_recurrence_days,
        },
        "store": {
            "path": config.store.path,
        },
        "server": {
            "port": config.server.port,
            "slack_signing_secret": config.server.slack_signing_secret,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)


def model_for(config: LLMConfig, provider: str) -> str:
    """Model name configured for a provider"""
    return {
        "anthropic": config.anthropic_model,
        "openai": config.openai_model,
        "google": config.google_model,
    }.get(provider, "")


def build_llm_client(config: ComediaConfig, provider: Optional[str] = None):
    """Create an LLMClient for ``provider`` (defaults to the primary)."""
    from .llm_client import LLMClient

    provider = (provider if provider is not None else config.llm.provider).lower()
    return LLMClient(
        provider=provider,
        model=model_for(config.llm, provider),
        anthropic_api_key=config.llm.anthropic_api_key or None,
        openai_api_key=config.llm.openai_api_key or None,
        google_api_key=config.llm.google_api_key or None,
        timeout=config.llm.timeout_seconds,
        max_tokens=config.llm.max_tokens,
    )
