"""
Application configuration loaded from config.ini.

Sections:
    [Api]        backend base URL, access token, request timeout
    [Narration]  text-to-speech engine settings
    [Session]    finish/abandon latch polling

A missing config.ini is not an error; every value has a default. The access
token can also come from the ROUTE_PACKER_ACCESS_TOKEN environment variable,
which wins over the file so tokens stay out of shared config files.
"""

import os
import configparser
from dataclasses import dataclass, field
from pathlib import Path

from logger import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_ENV = "ROUTE_PACKER_ACCESS_TOKEN"

DEFAULT_BASE_URL = "http://localhost:3000/api"


@dataclass
class ApiSettings:
    base_url: str = DEFAULT_BASE_URL
    access_token: str = ""
    timeout_seconds: float = 30.0


@dataclass
class NarrationSettings:
    engine: str = "espeak"          # "espeak" or "silent"
    voice: str = "en"
    words_per_minute: int = 160


@dataclass
class SessionSettings:
    finish_poll_interval_ms: int = 50
    finish_wait_timeout_seconds: float = 30.0


@dataclass
class AppConfig:
    """Aggregated settings for one run of the application."""
    api: ApiSettings = field(default_factory=ApiSettings)
    narration: NarrationSettings = field(default_factory=NarrationSettings)
    session: SessionSettings = field(default_factory=SessionSettings)


def _read_config(config_path: str) -> configparser.ConfigParser:
    """Load configuration from config.ini."""
    config = configparser.ConfigParser()

    if not Path(config_path).exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return config

    try:
        config.read(config_path, encoding='utf-8')
        logger.info(f"Configuration loaded from {config_path}")
    except configparser.Error as e:
        logger.error(f"Failed to load config: {e}")

    return config


def load_app_config(config_path: str = "config.ini") -> AppConfig:
    """
    Build an AppConfig from config.ini and the environment.

    Args:
        config_path: Path to config.ini

    Returns:
        AppConfig with defaults filled in for anything not configured
    """
    config = _read_config(config_path)

    api = ApiSettings(
        base_url=config.get('Api', 'BaseUrl', fallback=DEFAULT_BASE_URL).rstrip('/'),
        access_token=config.get('Api', 'AccessToken', fallback=''),
        timeout_seconds=config.getfloat('Api', 'TimeoutSeconds', fallback=30.0),
    )

    env_token = os.environ.get(ACCESS_TOKEN_ENV)
    if env_token:
        api.access_token = env_token

    narration = NarrationSettings(
        engine=config.get('Narration', 'Engine', fallback='espeak').strip().lower(),
        voice=config.get('Narration', 'Voice', fallback='en'),
        words_per_minute=config.getint('Narration', 'WordsPerMinute', fallback=160),
    )

    session = SessionSettings(
        finish_poll_interval_ms=config.getint('Session', 'FinishPollIntervalMs', fallback=50),
        finish_wait_timeout_seconds=config.getfloat('Session', 'FinishWaitTimeoutSeconds', fallback=30.0),
    )

    if not api.access_token:
        logger.warning("No API access token configured; backend calls will be unauthorized")

    return AppConfig(api=api, narration=narration, session=session)
