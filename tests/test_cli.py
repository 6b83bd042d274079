"""Tests for the command-line interface."""

import httpx
import pytest

from site_snacker import cli
from site_snacker.pipeline import Pipeline

from .fakes import EXAMPLE_HTML, FakeDescriber, FakeRenderer, FakeSite, FakeTranscriber


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "site-snacker.config.yml"
    path.write_text(f"directories:\n  base: {tmp_path.as_posix()}\n", encoding="utf-8")
    return path


class TestParseArgs:
    """Tests for argument parsing."""

    def test_snack_is_the_default_command(self):
        args = cli.parse_args(["https://example.com"])
        assert args.command == "snack"
        assert args.source == "https://example.com"
        assert args.use_browser is False
        assert args.use_cache is True
        assert args.merge is True
        assert args.wait is None
        assert args.timeout is None

    def test_snack_flags(self):
        args = cli.parse_args(
            ["snack", "https://example.com", "--puppeteer", "--wait=5000", "--timeout", "30000", "--no-cache", "--no-merge"]
        )
        assert args.use_browser is True
        assert args.wait == 5.0
        assert args.timeout == 30.0
        assert args.use_cache is False
        assert args.merge is False

    def test_subcommands(self, tmp_path):
        assert cli.parse_args(["fetch", "https://example.com"]).url == "https://example.com"
        assert cli.parse_args(["convert", "page.html"]).source == "page.html"
        args = cli.parse_args(["process", "https://example.com", "--config", str(tmp_path / "c.yml"), "--verbose"])
        assert args.command == "process"
        assert args.verbose is True
        assert args.config == tmp_path / "c.yml"

    def test_negative_milliseconds_rejected(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["snack", "https://example.com", "--wait=-1"])


class TestMain:
    """Tests for main() exit codes and output."""

    def test_missing_config(self, tmp_path, capsys):
        code = cli.main(["convert", "page.html", "--config", str(tmp_path / "absent.yml")])
        assert code == 1
        assert "Configuration file not found" in capsys.readouterr().err

    def test_convert_local_file(self, tmp_path, config_file, capsys):
        page = tmp_path / "page.html"
        page.write_text(EXAMPLE_HTML, encoding="utf-8")

        code = cli.main(["convert", str(page), "--config", str(config_file)])

        assert code == 0
        markdown = (tmp_path / "page.md").read_text(encoding="utf-8")
        assert "illustrative examples" in markdown
        assert (tmp_path / "page.metadata.json").is_file()
        assert "Markdown saved to:" in capsys.readouterr().out

    def test_process_without_markdown(self, config_file, capsys):
        code = cli.main(["process", "https://example.com/", "--config", str(config_file)])
        assert code == 1
        assert "run 'site-snacker convert' first" in capsys.readouterr().err

    def test_snack_sitemap_reports_failures(self, config_file, monkeypatch, capsys):
        """Failed pages are listed with the commands that retry them."""
        site = FakeSite(
            {
                "https://example.com/sitemap.xml": httpx.Response(
                    200,
                    text=(
                        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
                        "<url><loc>https://example.com/</loc></url>"
                        "<url><loc>https://example.com/gone</loc></url></urlset>"
                    ),
                ),
                "https://example.com/": httpx.Response(200, text=EXAMPLE_HTML),
            }
        )
        original = Pipeline.from_config

        def fake_from_config(cls, config, api_key=None):
            return original(
                config,
                describer=FakeDescriber(),
                transcriber=FakeTranscriber(),
                renderer=FakeRenderer(),
                transport=site.transport,
            )

        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(Pipeline, "from_config", classmethod(fake_from_config))

        code = cli.main(["https://example.com/sitemap.xml", "--config", str(config_file)])

        out = capsys.readouterr().out
        assert code == 0
        assert "Processed 1 URLs from https://example.com/sitemap.xml" in out
        assert "All pages have been merged into:" in out
        assert "=== ERROR SUMMARY ===" in out
        assert "1. https://example.com/gone" in out
        assert "Retry command: site-snacker snack https://example.com/gone --timeout=20000" in out
