"""Cache-first HTML retrieval with an HTTP strategy and a browser fallback."""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

import httpx

from .browser import BrowserRenderer
from .challenge import ChallengeDetector
from .config import FetchConfig, SnackerConfig
from .errors import ChallengeDetectedError, FetchError
from .models import FetchResult
from .utils import extract_domain, page_filename, url_to_file_path

logger = logging.getLogger("site_snacker")

Sleep = Callable[[float], Awaitable[None]]

SEC_CH_UA = '"Chromium";v="122", "Not(A:Brand";v="24", "Google Chrome";v="122"'


def browser_headers(
    config: FetchConfig,
    accept: Optional[str] = None,
    fetch_dest: str = "document",
    fetch_mode: str = "navigate",
    fetch_site: str = "none",
) -> Dict[str, str]:
    """Header set that mimics a desktop Chrome request."""
    headers = {
        "User-Agent": config.user_agent,
        "Accept": accept or config.accept,
        "Accept-Language": config.accept_language,
        "Accept-Encoding": "gzip, deflate",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Sec-Ch-Ua": SEC_CH_UA,
        "Sec-Ch-Ua-Mobile": "?0",
        "Sec-Ch-Ua-Platform": '"macOS"',
        "Sec-Fetch-Dest": fetch_dest,
        "Sec-Fetch-Mode": fetch_mode,
        "Sec-Fetch-Site": fetch_site,
    }
    if fetch_mode == "navigate":
        headers["Sec-Fetch-User"] = "?1"
        headers["Upgrade-Insecure-Requests"] = "1"
    headers.update(config.headers)
    return headers


class HtmlFetcher:
    """Retrieve raw HTML for a URL.

    The page cache is consulted first. On a miss the page is requested with
    a browser-like HTTP client; transient failures and rate limits are
    retried with a randomized backoff. A bot challenge that survives the
    retry budget escalates to a headless browser. Whatever succeeds is
    written to the cache before it is returned.
    """

    def __init__(
        self,
        config: SnackerConfig,
        renderer: Optional[BrowserRenderer] = None,
        detector: Optional[ChallengeDetector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.fetch_config = config.fetcher
        self.browser_config = config.browser
        self.cache_config = config.cache
        self.cache_dir = config.cache_dir
        self.detector = detector or ChallengeDetector.from_markers(
            config.fetcher.challenge_markers
        )
        self.renderer = renderer or BrowserRenderer(config.browser, self.detector)
        self._transport = transport
        self._sleep = sleep

    def cache_path(self, url: str) -> Path:
        return url_to_file_path(url, self.cache_dir, page_filename(url, ".html"))

    def caches(self, url: str) -> bool:
        if not self.cache_config.enabled:
            return False
        return extract_domain(url) not in self.cache_config.skip_domains

    async def fetch(
        self,
        url: str,
        use_cache: bool = True,
        use_browser: bool = False,
        wait: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        path = self.cache_path(url)
        cache_enabled = self.caches(url)
        if use_cache and cache_enabled and path.is_file():
            logger.info("Using cached content for %s", url)
            return FetchResult(url, path.read_text(encoding="utf-8"), path, "cache")

        if use_browser:
            logger.info("Fetching %s with the browser (explicitly requested)", url)
            html = await self.renderer.render(url, wait=wait, timeout=timeout)
            source = "browser"
        else:
            try:
                html = await self.fetch_light(url, timeout=timeout)
                source = "http"
            except ChallengeDetectedError as exc:
                if not self.browser_config.auto_detect:
                    raise
                logger.warning(
                    "Bot challenge detected for %s (%s), falling back to the browser",
                    url,
                    exc.signature,
                )
                html = await self.renderer.render(
                    url,
                    wait=self.browser_config.fallback_wait if wait is None else wait,
                    timeout=self.browser_config.fallback_timeout if timeout is None else timeout,
                )
                source = "browser"

        if cache_enabled:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(html, encoding="utf-8")
            logger.info("Cached content to %s", path)
        return FetchResult(url, html, path, source)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=self.fetch_config.max_redirects,
            transport=self._transport,
        )

    async def _backoff(self, factor: float = 1.0) -> None:
        delay = random.uniform(self.fetch_config.backoff_min, self.fetch_config.backoff_max)
        delay = (delay + self.fetch_config.retry_delay) * factor
        logger.info("Backing off for %.1fs", delay)
        await self._sleep(delay)

    def _challenge_signature(self, response: httpx.Response) -> Optional[str]:
        vendor = self.fetch_config.bot_protection_server.lower()
        server = response.headers.get("server", "").lower()
        if response.status_code == 403 and vendor and vendor in server:
            return f"HTTP 403 from {server}"
        return self.detector.detect(response.text)

    async def fetch_light(self, url: str, timeout: Optional[float] = None) -> str:
        """Plain HTTP retrieval; raises ``ChallengeDetectedError`` once retries run out."""
        timeout = timeout or self.fetch_config.timeout
        attempts = max(1, self.fetch_config.max_retries + 1)
        headers = browser_headers(self.fetch_config)

        async with self._client(timeout) as client:
            for attempt in range(1, attempts + 1):
                final = attempt == attempts
                logger.info("Fetching %s (attempt %d/%d)", url, attempt, attempts)
                try:
                    response = await client.get(url, headers=headers)
                except httpx.TransportError as exc:
                    if final:
                        raise FetchError(url, f"{type(exc).__name__}: {exc}") from exc
                    logger.warning("Request for %s failed (%s), retrying", url, exc)
                    await self._backoff()
                    continue
                except httpx.HTTPError as exc:
                    raise FetchError(url, f"{type(exc).__name__}: {exc}") from exc

                status = response.status_code
                if status == 429:
                    if final:
                        raise FetchError(url, "rate limited", status)
                    logger.warning("Rate limited by %s, retrying", url)
                    await self._backoff(factor=2.0)
                    continue
                # Challenge interstitials are often served with 403 or 503.
                signature = self._challenge_signature(response)
                if signature:
                    if final:
                        raise ChallengeDetectedError(url, signature, status)
                    logger.warning("Challenge page from %s (%s), retrying", url, signature)
                    await self._backoff()
                    continue
                if status >= 500:
                    if final:
                        raise FetchError(url, f"HTTP {status}", status)
                    logger.warning("Server error %d from %s, retrying", status, url)
                    await self._backoff()
                    continue
                if status >= 400:
                    raise FetchError(url, f"HTTP {status}", status)
                return response.text

        raise FetchError(url, "retry budget exhausted")
