"""Tests for sitemap expansion."""

import httpx
import pytest

from site_snacker.errors import SitemapError
from site_snacker.fetcher import HtmlFetcher
from site_snacker.sitemap import (
    SitemapWalker,
    is_sitemap_source,
    links_from_anchors,
    links_from_text,
    parse_sitemap_xml,
    sitemaps_from_robots,
)

from .fakes import FakeRenderer, FakeSite

BASE = "https://docs.test"


def urlset(*paths):
    entries = "".join(f"<url><loc>{BASE}{path}</loc></url>" for path in paths)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'
    )


def sitemap_index(*urls):
    entries = "".join(f"<sitemap><loc>{url}</loc></sitemap>" for url in urls)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</sitemapindex>'
    )


def xml_response(body):
    return httpx.Response(200, text=body, headers={"content-type": "application/xml"})


async def _no_sleep(delay):
    return None


def make_walker(config, site, renderer=None):
    fetcher = HtmlFetcher(config, renderer=renderer or FakeRenderer(), transport=site.transport, sleep=_no_sleep)
    return SitemapWalker(config, fetcher)


@pytest.fixture
def index_site():
    return FakeSite(
        {
            f"{BASE}/sitemap.xml": xml_response(
                sitemap_index(f"{BASE}/sitemap-docs.xml", f"{BASE}/sitemap-blog.xml")
            ),
            f"{BASE}/sitemap-docs.xml": xml_response(urlset("/docs/a", "/docs/b", "/docs/c")),
            f"{BASE}/sitemap-blog.xml": xml_response(urlset("/blog/1", "/blog/2", "/blog/3")),
        }
    )


class TestParsing:
    def test_urlset(self):
        assert parse_sitemap_xml(urlset("/a", "/b")) == ("urlset", [f"{BASE}/a", f"{BASE}/b"])

    def test_index(self):
        assert parse_sitemap_xml(sitemap_index(f"{BASE}/s1.xml")) == ("index", [f"{BASE}/s1.xml"])

    def test_not_a_sitemap(self):
        assert parse_sitemap_xml("<html><body><a href='/x'>x</a></body></html>") is None

    def test_robots(self):
        robots = "User-agent: *\nDisallow: /admin\nSitemap: https://docs.test/s1.xml\nsitemap:https://docs.test/s2.xml\n"
        assert sitemaps_from_robots(robots) == ["https://docs.test/s1.xml", "https://docs.test/s2.xml"]


class TestLinkExtraction:
    """Tests for the HTML link cascade helpers."""

    def test_anchor_links_stay_on_site(self):
        html = (
            '<a href="/a">A</a><a href="b#section">B</a><a href="https://other.test/x">X</a>'
            '<a href="/style.css">css</a><a href="mailto:me@docs.test">mail</a><a href="/a">A again</a>'
        )
        assert links_from_anchors(html, f"{BASE}/") == [f"{BASE}/a", f"{BASE}/b"]

    def test_raw_urls(self):
        text = f"See {BASE}/guide and {BASE}/logo.png or https://other.test/page"
        assert links_from_text(text, f"{BASE}/") == [f"{BASE}/guide"]


class TestSitemapWalker:
    """Tests for SitemapWalker.collect."""

    async def test_index_is_flattened(self, config, index_site):
        urls = await make_walker(config, index_site).collect(f"{BASE}/sitemap.xml")
        assert urls == [
            f"{BASE}/docs/a",
            f"{BASE}/docs/b",
            f"{BASE}/docs/c",
            f"{BASE}/blog/1",
            f"{BASE}/blog/2",
            f"{BASE}/blog/3",
        ]

    async def test_parallel_matches_sequential(self, config, index_site):
        config.sitemap.parallel = True
        config.sitemap.max_concurrent = 2
        urls = await make_walker(config, index_site).collect(f"{BASE}/sitemap.xml")
        assert len(urls) == 6
        assert set(urls) == {f"{BASE}/docs/{c}" for c in "abc"} | {f"{BASE}/blog/{n}" for n in "123"}

    async def test_local_file(self, config, tmp_path):
        path = tmp_path / "sitemap.xml"
        path.write_text(urlset("/one", "/two"), encoding="utf-8")
        site = FakeSite()

        urls = await make_walker(config, site).collect(str(path))

        assert urls == [f"{BASE}/one", f"{BASE}/two"]
        assert site.requests == []

    async def test_broken_child_is_skipped(self, config):
        site = FakeSite(
            {
                f"{BASE}/sitemap.xml": xml_response(sitemap_index(f"{BASE}/missing.xml", f"{BASE}/ok.xml")),
                f"{BASE}/ok.xml": xml_response(urlset("/ok")),
            }
        )
        urls = await make_walker(config, site).collect(f"{BASE}/sitemap.xml")
        assert urls == [f"{BASE}/ok"]

    async def test_html_page_falls_back_to_links(self, config):
        site = FakeSite(
            {
                f"{BASE}/": httpx.Response(
                    200,
                    text='<html><body><a href="/intro">Intro</a><a href="/api">API</a>'
                    '<a href="https://elsewhere.test/">Out</a><link href="/main.css"></body></html>',
                )
            }
        )
        urls = await make_walker(config, site).collect(f"{BASE}/")
        assert urls == [f"{BASE}/intro", f"{BASE}/api"]

    async def test_challenge_uses_browser(self, config):
        """A sitemap behind a bot challenge is rendered in the browser."""
        site = FakeSite({f"{BASE}/sitemap.xml": httpx.Response(200, text="<title>Just a moment...</title>")})
        renderer = FakeRenderer(html=urlset("/rendered"))

        urls = await make_walker(config, site, renderer).collect(f"{BASE}/sitemap.xml")

        assert urls == [f"{BASE}/rendered"]
        assert renderer.calls == [(f"{BASE}/sitemap.xml", 20.0, 60.0)]

    async def test_robots_fallback(self, config):
        site = FakeSite(
            {
                f"{BASE}/robots.txt": httpx.Response(200, text=f"User-agent: *\nSitemap: {BASE}/real.xml\n"),
                f"{BASE}/real.xml": xml_response(urlset("/from-robots")),
            }
        )
        urls = await make_walker(config, site).collect(f"{BASE}/sitemap.xml")
        assert urls == [f"{BASE}/from-robots"]

    async def test_robots_fallback_disabled(self, config):
        config.sitemap.robots_fallback = False
        site = FakeSite({f"{BASE}/robots.txt": httpx.Response(200, text=f"Sitemap: {BASE}/real.xml\n")})
        with pytest.raises(SitemapError, match="Failed to read sitemap"):
            await make_walker(config, site).collect(f"{BASE}/sitemap.xml")
        assert site.calls_to(f"{BASE}/robots.txt") == 0

    async def test_empty_sitemap(self, config):
        site = FakeSite({f"{BASE}/sitemap.xml": xml_response(urlset())})
        with pytest.raises(SitemapError, match="No URLs found"):
            await make_walker(config, site).collect(f"{BASE}/sitemap.xml")


class TestIsSitemapSource:
    def test_urls(self):
        assert is_sitemap_source("https://docs.test/sitemap.xml")
        assert is_sitemap_source("https://docs.test/sitemap_index")
        assert is_sitemap_source("https://docs.test/pages.xml")
        assert not is_sitemap_source("https://docs.test/guide")

    def test_local_files(self, tmp_path):
        xml = tmp_path / "pages.xml"
        xml.write_text("<urlset/>", encoding="utf-8")
        html = tmp_path / "sitemap.html"
        html.write_text("<html></html>", encoding="utf-8")
        assert is_sitemap_source(str(xml))
        assert not is_sitemap_source(str(html))
