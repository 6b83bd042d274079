"""Command-line entry point for site-snacker."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Iterable, Sequence

from .config import SnackerConfig, load_config, require_api_key
from .errors import SnackerError
from .fetcher import HtmlFetcher
from .models import OrchestrationResult, RunOptions, SitemapRunResult
from .pipeline import (
    Pipeline,
    convert_page,
    fetch_page,
    markdown_path_for,
    metadata_path_for,
)

logger = logging.getLogger("site_snacker.cli")

QUIET_LOGGERS = ("httpx", "httpcore", "openai")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("snack", *argv)


def _milliseconds(value: str) -> float:
    try:
        millis = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected milliseconds, got {value!r}") from exc
    if millis < 0:
        raise argparse.ArgumentTypeError("milliseconds must not be negative")
    return millis / 1000.0


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to site-snacker.config.yml (default: ./site-snacker.config.yml)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_fetch_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--puppeteer",
        dest="use_browser",
        action="store_true",
        help="Fetch with the headless browser instead of plain HTTP",
    )
    parser.add_argument(
        "--wait",
        type=_milliseconds,
        default=None,
        help="Milliseconds to let bot-challenge scripts settle in the browser",
    )
    parser.add_argument(
        "--timeout",
        type=_milliseconds,
        default=None,
        help="Per-attempt timeout in milliseconds",
    )
    parser.add_argument(
        "--no-cache",
        dest="use_cache",
        action="store_false",
        help="Ignore cached HTML and fetch again",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="site-snacker",
        description=(
            "Turn web pages and sitemaps into Markdown with AI descriptions of their "
            "images and transcripts of their audio."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch a page into the HTML cache")
    fetch_parser.add_argument("url", help="URL to fetch")
    _add_fetch_arguments(fetch_parser)
    _add_common_arguments(fetch_parser)

    convert_parser = subparsers.add_parser(
        "convert", help="Convert cached HTML or a local HTML file to Markdown"
    )
    convert_parser.add_argument("source", help="URL with cached HTML, or a local .html file")
    _add_common_arguments(convert_parser)

    process_parser = subparsers.add_parser(
        "process", help="Describe the images and transcribe the audio of converted Markdown"
    )
    process_parser.add_argument("url", help="URL whose converted Markdown should be enriched")
    _add_common_arguments(process_parser)

    snack_parser = subparsers.add_parser(
        "snack", help="Run the whole pipeline for a URL or a sitemap"
    )
    snack_parser.add_argument("source", help="Page URL, sitemap URL, or local sitemap file")
    _add_fetch_arguments(snack_parser)
    snack_parser.add_argument(
        "--no-merge",
        dest="merge",
        action="store_false",
        help="Do not merge sitemap pages into one document",
    )
    _add_common_arguments(snack_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _run_options(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        use_browser=getattr(args, "use_browser", False),
        wait=getattr(args, "wait", None),
        timeout=getattr(args, "timeout", None),
        use_cache=getattr(args, "use_cache", True),
        merge=getattr(args, "merge", True),
    )


async def _run_fetch(args: argparse.Namespace, config: SnackerConfig) -> None:
    fetched = await fetch_page(HtmlFetcher(config), args.url, _run_options(args))
    print(f"Fetched {args.url} ({fetched.source}); HTML saved at {fetched.cache_path}")


async def _run_convert(args: argparse.Namespace, config: SnackerConfig) -> None:
    source = args.source
    local = Path(source)
    if local.is_file():
        html = local.read_text(encoding="utf-8")
        url = "file://localhost" + local.resolve().as_posix()
        markdown_path = local.with_suffix(".md")
        metadata_path = local.with_suffix(".metadata.json")
    else:
        url = source
        fetched = await fetch_page(HtmlFetcher(config), url)
        html = fetched.html
        markdown_path = markdown_path_for(config, url)
        metadata_path = metadata_path_for(config, url)
    path = convert_page(html, url, markdown_path, metadata_path)
    print(f"Markdown saved to: {path}")


async def _run_process(args: argparse.Namespace, config: SnackerConfig) -> None:
    markdown_path = markdown_path_for(config, args.url)
    if not markdown_path.is_file():
        raise SnackerError(
            f"No Markdown found in cache for {args.url} (expected {markdown_path}); "
            "run 'site-snacker convert' first"
        )
    pipeline = Pipeline.from_config(config, api_key=require_api_key())
    processed = await pipeline.enrich(args.url, markdown_path.read_text(encoding="utf-8"))
    print(f"Processed Markdown saved to: {processed}")
    print(pipeline.costs.get_summary())


def _report_page(result: OrchestrationResult) -> None:
    print(f"HTML cached at: {result.html_path}")
    print(f"Markdown saved at: {result.markdown_path}")
    print(f"Processed Markdown saved at: {result.processed_path}")
    print(result.cost_summary)


def _report_sitemap(run: SitemapRunResult) -> None:
    print(f"Processed {len(run.results)} URLs from {run.source}")
    print(run.total_cost_summary)
    if run.merged_path:
        print(f"All pages have been merged into: {run.merged_path}")
    if not run.failed_urls:
        print("All URLs were processed successfully!")
        return
    print("=== ERROR SUMMARY ===")
    print(f"{len(run.failed_urls)} URLs failed to process and need to be retried:")
    for index, failed in enumerate(run.failed_urls, start=1):
        print(f"{index}. {failed.url}")
        print(f"   Error: {failed.error}")
        print(f"   Retry command: {failed.retry_command}")
    print("The retry commands double the timeout to help with slow-loading pages.")


async def _run_snack(args: argparse.Namespace, config: SnackerConfig) -> None:
    pipeline = Pipeline.from_config(config, api_key=require_api_key())
    outcome = await pipeline.run(args.source, _run_options(args))
    if isinstance(outcome, SitemapRunResult):
        _report_sitemap(outcome)
    else:
        _report_page(outcome)


HANDLERS = {
    "fetch": _run_fetch,
    "convert": _run_convert,
    "process": _run_process,
    "snack": _run_snack,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    try:
        config = load_config(args.config)
        asyncio.run(HANDLERS[args.command](args, config))
    except SnackerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("Unhandled error", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
