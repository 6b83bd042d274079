"""Exception hierarchy shared by every pipeline stage."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class SnackerError(Exception):
    """Base class for all errors raised by site_snacker."""


class ConfigError(SnackerError):
    """The configuration file is missing or malformed."""


class MissingAPIKeyError(SnackerError):
    """The AI provider API key is not available in the environment."""


class InvalidURLError(SnackerError):
    """A URL could not be parsed into a host and path."""

    def __init__(self, url: str, reason: str = "") -> None:
        self.url = url
        message = f"Invalid URL: {url!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class FetchError(SnackerError):
    """Retrieving a page failed."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"Failed to fetch {url}: {message}")


class ChallengeDetectedError(FetchError):
    """The response was a bot-challenge interstitial rather than the page."""

    def __init__(self, url: str, signature: str, status_code: Optional[int] = None) -> None:
        self.signature = signature
        super().__init__(url, f"bot challenge detected ({signature})", status_code)


class StillChallengedError(ChallengeDetectedError):
    """The browser rendered the page but the challenge was never solved."""

    def __init__(self, url: str, signature: str) -> None:
        super().__init__(url, signature)
        self.args = (
            f"Still getting a challenge page for {url} after waiting ({signature}). "
            "Try increasing the wait time.",
        )


class DownloadError(SnackerError):
    """Downloading an embedded asset failed."""

    def __init__(
        self,
        url: str,
        message: str,
        status_code: Optional[int] = None,
        preview: str = "",
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.preview = preview
        text = f"Failed to download {url}: {message}"
        if preview:
            text = f"{text} (response preview: {preview!r})"
        super().__init__(text)


class ConversionError(SnackerError):
    """HTML could not be turned into Markdown."""


class SitemapError(SnackerError):
    """A sitemap source could not be read or understood."""


class GenerationError(SnackerError):
    """The AI model failed to describe or transcribe an asset."""


class CostLimitExceededError(GenerationError):
    """The configured spending cap was reached; no further AI calls are made."""


class RegistryErrorType(str, Enum):
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    LOAD_FAILED = "LOAD_FAILED"
    SAVE_FAILED = "SAVE_FAILED"
    INVALID_FORMAT = "INVALID_FORMAT"


class RegistryError(SnackerError):
    """The media registry could not be read, written, or queried."""

    def __init__(self, kind: RegistryErrorType, message: str) -> None:
        self.kind = kind
        super().__init__(f"[{kind.value}] {message}")
