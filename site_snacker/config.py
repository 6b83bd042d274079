"""Configuration objects and constants for the pipeline."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Union, get_type_hints

import yaml
from dotenv import load_dotenv

from .errors import ConfigError, MissingAPIKeyError

logger = logging.getLogger("site_snacker")

DEFAULT_CONFIG_FILENAME = "site-snacker.config.yml"
API_KEY_ENV = "OPENAI_API_KEY"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)
DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"
DEFAULT_ACCEPT_LANGUAGE = "en-US,en;q=0.9"

# Phrases that only appear on bot-challenge interstitials, checked in order.
DEFAULT_CHALLENGE_MARKERS = [
    "Just a moment...",
    "cf-browser-verification",
    "cf-challenge-running",
    "_cf_chl_opt",
    "Checking your browser before accessing",
    "Attention Required! | Cloudflare",
]


@dataclass
class FetchConfig:
    """Lightweight HTTP retrieval settings."""

    timeout: float = 10.0
    max_redirects: int = 5
    max_retries: int = 2
    retry_delay: float = 1.0
    backoff_min: float = 1.0
    backoff_max: float = 3.0
    bot_protection_server: str = "cloudflare"
    challenge_markers: List[str] = field(
        default_factory=lambda: list(DEFAULT_CHALLENGE_MARKERS)
    )
    user_agent: str = DEFAULT_USER_AGENT
    accept: str = DEFAULT_ACCEPT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class BrowserConfig:
    """Scripted browser settings used when a challenge blocks plain HTTP."""

    wait: float = 10.0
    timeout: float = 30.0
    fallback_wait: float = 20.0
    fallback_timeout: float = 60.0
    auto_detect: bool = True
    headless: bool = True
    wait_for_selector: str = "body"
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = DEFAULT_USER_AGENT
    accept: str = DEFAULT_ACCEPT
    accept_language: str = DEFAULT_ACCEPT_LANGUAGE
    block_resources: List[str] = field(
        default_factory=lambda: ["image", "font", "media", "stylesheet"]
    )
    launch_args: List[str] = field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
        ]
    )


@dataclass
class CacheConfig:
    enabled: bool = True
    skip_domains: List[str] = field(default_factory=list)


@dataclass
class ImageConfig:
    """Vision model and Markdown settings for image descriptions."""

    model: str = "gpt-4o-mini"
    max_tokens: int = 300
    prompt: str = (
        "Describe this image in detail for a reader who cannot see it. "
        "Include any visible text. The image alt text is: {alt_text}"
    )
    detail: str = "low"
    description_tag: str = "image_description"
    error_prefix: str = "Error generating description"
    directory: str = "images"
    max_image_side: int = 2048
    max_bytes: int = 20 * 1024 * 1024
    accept: str = "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8"


@dataclass
class AudioConfig:
    """Transcription model and Markdown settings for audio links."""

    model: str = "whisper-1"
    language: str = "en"
    response_format: str = "text"
    transcript_tag: str = "audio_transcript"
    error_prefix: str = "Error generating transcription"
    directory: str = "audio"
    max_bytes: int = 25 * 1024 * 1024
    accept: str = "audio/*,*/*;q=0.8"
    extensions: List[str] = field(
        default_factory=lambda: ["mp3", "wav", "ogg", "m4a", "aac"]
    )


@dataclass
class VisionPricing:
    input_per_1k: float = 0.01
    output_per_1k: float = 0.03
    per_image: float = 0.00765


@dataclass
class AudioPricing:
    per_minute: float = 0.006


@dataclass
class PricingConfig:
    vision: VisionPricing = field(default_factory=VisionPricing)
    audio: AudioPricing = field(default_factory=AudioPricing)


@dataclass
class DirectoryConfig:
    """Directory layout; relative entries resolve against ``base``."""

    base: str = "."
    cache: str = "tmp"
    processed: str = "output/processed"
    merged: str = "output/merged"


@dataclass
class RegistryConfig:
    path: str = "tmp/media-registry.json"
    auto_save: bool = True
    backup: bool = True


@dataclass
class SitemapConfig:
    auto_merge: bool = True
    parallel: bool = False
    max_concurrent: int = 3
    robots_fallback: bool = True


@dataclass
class CostTrackingConfig:
    """Spending guards; a threshold of 0 disables it."""

    enabled: bool = True
    warn_threshold: float = 1.0
    stop_threshold: float = 0.0


@dataclass
class SnackerConfig:
    """Top-level settings shared read-only by every component."""

    fetcher: FetchConfig = field(default_factory=FetchConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    image: ImageConfig = field(default_factory=ImageConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    directories: DirectoryConfig = field(default_factory=DirectoryConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    sitemap: SitemapConfig = field(default_factory=SitemapConfig)
    cost_tracking: CostTrackingConfig = field(default_factory=CostTrackingConfig)

    @classmethod
    def default(cls, base_dir: Union[str, Path, None] = None) -> "SnackerConfig":
        config = cls()
        if base_dir is not None:
            config.directories.base = str(base_dir)
        return config

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        if path.is_absolute():
            return path
        return Path(self.directories.base).expanduser() / path

    @property
    def cache_dir(self) -> Path:
        return self._resolve(self.directories.cache)

    @property
    def processed_dir(self) -> Path:
        return self._resolve(self.directories.processed)

    @property
    def merged_dir(self) -> Path:
        return self._resolve(self.directories.merged)

    @property
    def registry_path(self) -> Path:
        return self._resolve(self.registry.path)


def _build_section(cls: type, data: Any, where: str) -> Any:
    """Instantiate dataclass ``cls`` from a mapping, recursing into nested sections."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration section '{where}' must be a mapping")
    hints = get_type_hints(cls)
    known = {item.name for item in fields(cls)}
    kwargs: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown configuration key %s.%s", where, key)
            continue
        hint = hints.get(key)
        if isinstance(hint, type) and is_dataclass(hint):
            kwargs[key] = _build_section(hint, value, f"{where}.{key}")
        else:
            kwargs[key] = value
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ConfigError(f"Invalid configuration section '{where}': {exc}") from exc


def load_config(path: Union[str, Path, None] = None) -> SnackerConfig:
    """Read the YAML configuration file once at process start."""
    config_path = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_FILENAME
    if not config_path.is_file():
        raise ConfigError(f"Configuration file not found: {config_path}")
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse {config_path}: {exc}") from exc

    config = _build_section(SnackerConfig, raw or {}, "config")
    logger.debug("Loaded configuration from %s", config_path)
    return config


def require_api_key(env_var: str = API_KEY_ENV) -> str:
    """Return the provider API key or abort startup when it is missing."""
    load_dotenv()
    api_key = os.getenv(env_var)
    if not api_key:
        raise MissingAPIKeyError(f"{env_var} environment variable is not set")
    return api_key
