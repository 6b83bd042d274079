"""Scripted browser rendering for pages guarded by bot challenges."""

from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import (
    Error as PlaywrightError,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .challenge import ChallengeDetector
from .config import BrowserConfig
from .errors import FetchError, StillChallengedError

logger = logging.getLogger("site_snacker")


class BrowserRenderer:
    """Render a URL in headless Chromium and return the settled document."""

    def __init__(self, config: BrowserConfig, detector: ChallengeDetector) -> None:
        self.config = config
        self.detector = detector

    async def _block_heavy_resources(self, route: Route) -> None:
        if route.request.resource_type in self.config.block_resources:
            await route.abort()
        else:
            await route.continue_()

    async def render(
        self,
        url: str,
        wait: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Navigate to ``url``, let challenge scripts settle, and read the HTML.

        Raises ``StillChallengedError`` when the rendered document still
        carries a challenge signature after the settle delay.
        """
        wait = self.config.wait if wait is None else wait
        timeout = self.config.timeout if timeout is None else timeout

        try:
            async with async_playwright() as playwright:
                browser = await playwright.chromium.launch(
                    headless=self.config.headless,
                    args=self.config.launch_args,
                )
                try:
                    context = await browser.new_context(
                        viewport={
                            "width": self.config.viewport_width,
                            "height": self.config.viewport_height,
                        },
                        user_agent=self.config.user_agent,
                        extra_http_headers={
                            "Accept": self.config.accept,
                            "Accept-Language": self.config.accept_language,
                        },
                    )
                    page = await context.new_page()
                    page.set_default_timeout(timeout * 1000)
                    page.set_default_navigation_timeout(timeout * 1000)
                    if self.config.block_resources:
                        await page.route("**/*", self._block_heavy_resources)

                    logger.info("Loading %s in headless browser", url)
                    await page.goto(url, wait_until="networkidle")
                    if self.config.wait_for_selector:
                        await page.wait_for_selector(self.config.wait_for_selector)
                    if wait > 0:
                        logger.info("Waiting %.1fs for potential bot challenge...", wait)
                        await page.wait_for_timeout(int(wait * 1000))
                    html = await page.content()
                finally:
                    await browser.close()
        except PlaywrightTimeoutError as exc:
            raise FetchError(url, f"browser timed out after {timeout:.0f}s: {exc}") from exc
        except PlaywrightError as exc:
            raise FetchError(url, f"browser error: {exc}") from exc

        signature = self.detector.detect(html)
        if signature:
            raise StillChallengedError(url, signature)
        return html
