"""Tests for the MCP server tool."""

import httpx

from site_snacker import mcp_server
from site_snacker.pipeline import Pipeline

from .fakes import EXAMPLE_HTML, FakeDescriber, FakeRenderer, FakeSite, FakeTranscriber


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = mcp_server._load_config()
    assert config.cache_dir == tmp_path.resolve() / "tmp"


def test_config_file_in_working_directory(tmp_path, monkeypatch):
    (tmp_path / "site-snacker.config.yml").write_text("image:\n  model: local-vision\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    assert mcp_server._load_config().image.model == "local-vision"


async def test_snack_returns_processed_markdown(tmp_path, monkeypatch):
    site = FakeSite({"https://example.com/": httpx.Response(200, text=EXAMPLE_HTML)})
    original = Pipeline.from_config

    def fake_from_config(cls, config):
        return original(
            config,
            describer=FakeDescriber(),
            transcriber=FakeTranscriber(),
            renderer=FakeRenderer(),
            transport=site.transport,
        )

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(Pipeline, "from_config", classmethod(fake_from_config))

    text = await mcp_server.snack("https://example.com/")

    assert text.startswith("[source: https://example.com/]")
    assert "illustrative examples" in text
