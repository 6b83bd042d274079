"""High-level orchestration: fetch, convert, enrich, and merge."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import httpx

from .ai import (
    AudioTranscriber,
    ImageDescriber,
    OpenAIAudioTranscriber,
    OpenAIImageDescriber,
    build_openai_client,
)
from .browser import BrowserRenderer
from .config import SnackerConfig, require_api_key
from .converter import generate_metadata, html_to_markdown, save_metadata
from .costs import CostTracker
from .download import ContentDownloader
from .enrichment import MediaEnricher
from .errors import SnackerError
from .fetcher import HtmlFetcher
from .markdown import compose_processed
from .merger import FileToMerge, merge_markdown_files
from .models import (
    FailedUrl,
    FetchResult,
    OrchestrationResult,
    RunOptions,
    SitemapRunResult,
)
from .registry import MediaRegistry
from .sitemap import SitemapWalker, is_sitemap_source
from .utils import page_filename, slugify, url_to_dir_path, url_to_file_path

logger = logging.getLogger("site_snacker")

CLI_NAME = "site-snacker"


def build_retry_command(url: str, options: RunOptions, default_timeout: float) -> str:
    """Command line that re-runs one page with twice the timeout."""
    timeout = options.timeout if options.timeout is not None else default_timeout
    parts = [CLI_NAME, "snack", url, f"--timeout={int(timeout * 1000 * 2)}"]
    if options.use_browser:
        parts.append("--puppeteer")
    if options.wait is not None:
        parts.append(f"--wait={int(options.wait * 1000)}")
    if not options.use_cache:
        parts.append("--no-cache")
    return " ".join(parts)


def markdown_path_for(config: SnackerConfig, url: str) -> Path:
    return url_to_file_path(url, config.cache_dir, page_filename(url, ".md"))


def metadata_path_for(config: SnackerConfig, url: str) -> Path:
    return url_to_file_path(url, config.cache_dir, page_filename(url, ".metadata.json"))


def processed_path_for(config: SnackerConfig, url: str) -> Path:
    return url_to_file_path(url, config.processed_dir, page_filename(url, ".md"))


async def fetch_page(
    fetcher: HtmlFetcher, url: str, options: Optional[RunOptions] = None
) -> FetchResult:
    """Fetch ``url`` and make sure the HTML intermediate exists on disk."""
    options = options or RunOptions()
    fetched = await fetcher.fetch(
        url,
        use_cache=options.use_cache,
        use_browser=options.use_browser,
        wait=options.wait,
        timeout=options.timeout,
    )
    # Skipped domains bypass the cache, so the fetcher never wrote them.
    if fetched.source != "cache" and not fetcher.caches(url):
        fetched.cache_path.parent.mkdir(parents=True, exist_ok=True)
        fetched.cache_path.write_text(fetched.html, encoding="utf-8")
    return fetched


def convert_page(html: str, url: str, markdown_path: Path, metadata_path: Path) -> Path:
    """Write the Markdown rendition of ``html`` and its metadata sidecar."""
    markdown = html_to_markdown(html, url)
    markdown_path.parent.mkdir(parents=True, exist_ok=True)
    markdown_path.write_text(markdown, encoding="utf-8")
    logger.info("Saved Markdown to %s", markdown_path)
    save_metadata(generate_metadata(markdown, url), metadata_path)
    return markdown_path


class Pipeline:
    """Runs single pages or whole sitemaps through every stage.

    Components are injected so tests can swap the network, the browser and
    the AI models; ``from_config`` wires the production ones.
    """

    def __init__(
        self,
        config: SnackerConfig,
        fetcher: HtmlFetcher,
        enricher: MediaEnricher,
        costs: CostTracker,
        walker: Optional[SitemapWalker] = None,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.enricher = enricher
        self.costs = costs
        self.walker = walker or SitemapWalker(config, fetcher)

    @classmethod
    def from_config(
        cls,
        config: SnackerConfig,
        api_key: Optional[str] = None,
        describer: Optional[ImageDescriber] = None,
        transcriber: Optional[AudioTranscriber] = None,
        renderer: Optional[BrowserRenderer] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "Pipeline":
        if describer is None or transcriber is None:
            client = build_openai_client(api_key or require_api_key())
            describer = describer or OpenAIImageDescriber(config.image, client)
            transcriber = transcriber or OpenAIAudioTranscriber(config.audio, client)

        fetcher = HtmlFetcher(config, renderer=renderer, transport=transport)
        costs = CostTracker(config.pricing, config.cost_tracking)
        registry = MediaRegistry(
            config.registry_path,
            auto_save=config.registry.auto_save,
            backup=config.registry.backup,
        )
        enricher = MediaEnricher(
            config,
            ContentDownloader(config.fetcher, transport=transport),
            registry,
            costs,
            describer,
            transcriber,
        )
        return cls(config, fetcher, enricher, costs)

    async def fetch(self, url: str, options: Optional[RunOptions] = None) -> FetchResult:
        return await fetch_page(self.fetcher, url, options)

    def convert(self, url: str, html: str) -> Path:
        return convert_page(
            html,
            url,
            markdown_path_for(self.config, url),
            metadata_path_for(self.config, url),
        )

    async def enrich(self, url: str, markdown: str) -> Path:
        """Enrich ``markdown`` for the page at ``url`` and write the processed file."""
        body = await self.enricher.enrich(
            markdown, url, url_to_dir_path(url, self.config.cache_dir)
        )
        path = processed_path_for(self.config, url)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(compose_processed(url, body), encoding="utf-8")
        logger.info("Processed Markdown saved to %s", path)
        return path

    async def process_url(self, url: str, options: Optional[RunOptions] = None) -> OrchestrationResult:
        logger.info("=== Snacking %s ===", url)
        fetched = await self.fetch(url, options)
        markdown_path = self.convert(url, fetched.html)
        processed_path = await self.enrich(url, markdown_path.read_text(encoding="utf-8"))
        summary = self.costs.get_summary()
        logger.info("HTML cached at %s", fetched.cache_path)
        logger.info("Markdown saved at %s", markdown_path)
        return OrchestrationResult(
            url=url,
            html_path=fetched.cache_path,
            markdown_path=markdown_path,
            processed_path=processed_path,
            cost_summary=summary,
        )

    def merged_path(self, source: str) -> Path:
        parsed = urlparse(source)
        name = parsed.hostname if parsed.scheme in ("http", "https") else Path(source).stem
        return self.config.merged_dir / f"{slugify(name or 'sitemap', fallback='sitemap')}.md"

    async def _process_page(
        self, url: str, options: RunOptions
    ) -> Union[OrchestrationResult, FailedUrl]:
        try:
            return await self.process_url(url, options)
        except (SnackerError, OSError) as exc:
            logger.error("Failed to process %s: %s", url, exc)
            error = str(exc)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected error processing %s", url)
            error = f"{type(exc).__name__}: {exc}"
        return FailedUrl(
            url=url,
            error=error,
            retry_command=build_retry_command(url, options, self.config.fetcher.timeout),
        )

    async def process_sitemap(
        self, source: str, options: Optional[RunOptions] = None
    ) -> SitemapRunResult:
        options = options or RunOptions()
        urls = await self.walker.collect(source)
        run = SitemapRunResult(source=source)

        batch_size = max(1, self.config.sitemap.max_concurrent) if self.config.sitemap.parallel else 1
        for start in range(0, len(urls), batch_size):
            batch = urls[start : start + batch_size]
            logger.info(
                "Processing URL %d-%d of %d", start + 1, start + len(batch), len(urls)
            )
            outcomes = await asyncio.gather(*(self._process_page(url, options) for url in batch))
            for outcome in outcomes:
                if isinstance(outcome, FailedUrl):
                    run.failed_urls.append(outcome)
                else:
                    run.results.append(outcome)

        if options.merge and self.config.sitemap.auto_merge and run.results:
            run.merged_path = merge_markdown_files(
                [FileToMerge(result.processed_path, result.url) for result in run.results],
                self.merged_path(source),
                source,
                self.config.image.description_tag,
            )
        run.total_cost_summary = self.costs.get_summary()
        return run

    async def run(
        self, source: str, options: Optional[RunOptions] = None
    ) -> Union[OrchestrationResult, SitemapRunResult]:
        if is_sitemap_source(source):
            return await self.process_sitemap(source, options)
        return await self.process_url(source, options)
