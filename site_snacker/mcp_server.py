"""MCP server exposing the site-snacker pipeline as a tool."""

from __future__ import annotations

import logging
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .config import DEFAULT_CONFIG_FILENAME, SnackerConfig, load_config
from .models import RunOptions
from .pipeline import Pipeline

logger = logging.getLogger("site_snacker.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="site-snacker")


def _load_config() -> SnackerConfig:
    config_path = Path.cwd() / DEFAULT_CONFIG_FILENAME
    if config_path.is_file():
        return load_config(config_path)
    return SnackerConfig.default(Path.cwd())


@mcp.tool()
async def snack(url: str, use_browser: bool = False) -> str:
    """Fetch a web page and return Markdown with image descriptions and audio transcripts."""

    config = _load_config()
    pipeline = Pipeline.from_config(config)
    result = await pipeline.process_url(url, RunOptions(use_browser=use_browser))
    return result.processed_path.read_text(encoding="utf-8")


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
