"""Tests for HTML to Markdown conversion."""

import json

import pytest

from site_snacker.converter import (
    Breadcrumb,
    breadcrumbs_to_markdown,
    extract_breadcrumbs,
    extract_content,
    generate_metadata,
    html_to_markdown,
    save_metadata,
)
from site_snacker.errors import ConversionError

from .fakes import EXAMPLE_HTML

PARAGRAPH = (
    "Cats are small, carnivorous mammals that have lived alongside people for "
    "thousands of years. They are valued for companionship and for their ability "
    "to hunt vermin, and they communicate with a wide range of sounds."
)

ARTICLE_HTML = f"""
<html>
  <head><title>All About Cats</title><meta name="description" content="Feline facts"></head>
  <body>
    <nav aria-label="breadcrumb">
      <ol>
        <li><a href="/">Home</a></li>
        <li><a href="/docs">Docs</a></li>
        <li>Page</li>
      </ol>
    </nav>
    <article>
      <h1>Cats</h1>
      <p>{PARAGRAPH}</p>
      <img src="/a.png" alt="A">
      <pre><code class="language-python">print("meow")</code></pre>
      <script>var tracking = true;</script>
    </article>
  </body>
</html>
"""


class TestExtractContent:
    """Tests for main-content extraction."""

    def test_small_page(self):
        page = extract_content(EXAMPLE_HTML, "https://example.com/")
        assert page.metadata.title == "Example Domain"
        assert "illustrative examples" in page.plain_text

    def test_metadata(self):
        page = extract_content(ARTICLE_HTML, "https://cats.test/")
        assert page.metadata.source_url == "https://cats.test/"
        assert page.metadata.description == "Feline facts"
        assert page.metadata.byline is None

    def test_images_are_kept(self):
        page = extract_content(ARTICLE_HTML, "https://cats.test/")
        assert 'src="/a.png"' in page.content_html
        assert "tracking" not in page.content_html

    def test_empty_page(self):
        with pytest.raises(ConversionError):
            extract_content("<html><body></body></html>", "https://empty.test/")


class TestHtmlToMarkdown:
    """Tests for html_to_markdown."""

    def test_example_domain(self):
        markdown = html_to_markdown(EXAMPLE_HTML, "https://example.com/")
        assert "Example Domain" in markdown
        assert "This domain is for use in illustrative examples in documents." in markdown
        assert "<p>" not in markdown
        assert markdown.endswith("\n")
        assert "\n\n\n" not in markdown

    def test_article(self):
        markdown = html_to_markdown(ARTICLE_HTML, "https://cats.test/")
        assert markdown.startswith("> [Home](/) > [Docs](/docs) > Page\n\n")
        assert "![A](/a.png)" in markdown
        assert "Cats are small, carnivorous mammals" in markdown
        assert 'print("meow")' in markdown

    def test_without_breadcrumbs(self):
        markdown = html_to_markdown(ARTICLE_HTML, "https://cats.test/", include_breadcrumbs=False)
        assert not markdown.startswith(">")


class TestBreadcrumbs:
    def test_extract(self):
        assert extract_breadcrumbs(ARTICLE_HTML) == [
            Breadcrumb("Home", "/"),
            Breadcrumb("Docs", "/docs"),
            Breadcrumb("Page"),
        ]

    def test_render(self):
        crumbs = [Breadcrumb("Home", "/"), Breadcrumb("Docs", "/docs"), Breadcrumb("Page")]
        assert breadcrumbs_to_markdown(crumbs) == "> [Home](/) > [Docs](/docs) > Page\n\n"

    def test_none(self):
        assert extract_breadcrumbs(EXAMPLE_HTML) == []
        assert breadcrumbs_to_markdown([]) == ""


class TestMetadata:
    """Tests for the metadata sidecar."""

    def test_counts(self):
        metadata = generate_metadata("# Title\n\nHello world", "https://example.com/")
        assert metadata["url"] == "https://example.com/"
        assert metadata["title"] == "Title"
        assert metadata["wordCount"] == 4
        assert metadata["charCount"] == 20
        assert metadata["lineCount"] == 3
        assert metadata["tokenCount"] == 5
        assert metadata["generatedAt"].endswith("Z")

    def test_save(self, tmp_path):
        path = tmp_path / "nested" / "page.metadata.json"
        save_metadata({"url": "https://example.com/"}, path)
        assert json.loads(path.read_text(encoding="utf-8")) == {"url": "https://example.com/"}
