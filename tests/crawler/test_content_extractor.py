"""Unit tests for the content extractor.

Tests metadata extraction on synthetic HTML, the readability pass and its
fallbacks, and degradation to ``readability=None`` on sparse documents.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from post_crawler.crawler.config import EXCERPT_CHARS, MAIN_TEXT_CHARS
from post_crawler.crawler.content_extractor import ContentExtractor, PageMetadata

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

_OG_ONLY_HTML = """
<html><head>
  <title>  Open   Graph page </title>
  <meta property="og:description" content="From Open Graph">
  <meta property="og:image" content="https://example.com/og.png">
  <meta property="author" content="Prop Author">
</head><body><p>Body text</p></body></html>
"""

_BOTH_DESCRIPTIONS_HTML = """
<html><head>
  <meta property="og:description" content="Open Graph description">
  <meta name="description" content="Explicit description">
</head><body></body></html>
"""

_JS_ONLY_HTML = "<html><head></head><body><div id='root'></div></body></html>"

_NUL_BYTES_HTML = "<html><head><title>T\x00itle</title></head><body><p>Text with\x00NUL</p></body></html>"


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


class TestExtractMetadata:
    def test_reads_title_and_meta_tags(self, article_html: str) -> None:
        metadata = ContentExtractor().extract_metadata(article_html)

        assert metadata.title == "Example"
        assert metadata.description == "An example"
        assert metadata.image == "https://example.com/cover.png"
        assert metadata.author == "Jane Reporter"
        assert metadata.keywords == "news, example"

    def test_explicit_description_preferred_over_open_graph(self) -> None:
        metadata = ContentExtractor().extract_metadata(_BOTH_DESCRIPTIONS_HTML)
        assert metadata.description == "Explicit description"

    def test_open_graph_fallbacks(self) -> None:
        metadata = ContentExtractor().extract_metadata(_OG_ONLY_HTML)

        assert metadata.title == "Open Graph page"
        assert metadata.description == "From Open Graph"
        assert metadata.image == "https://example.com/og.png"
        assert metadata.author == "Prop Author"
        assert metadata.keywords == ""

    def test_main_text_excludes_scripts(self, article_html: str) -> None:
        metadata = ContentExtractor().extract_metadata(article_html)

        assert metadata.main_text.startswith("Home | World | Sports")
        assert "window.tracking" not in metadata.main_text

    def test_main_text_truncated(self) -> None:
        html = "<html><body><p>" + ("word " * 1000) + "</p></body></html>"

        metadata = ContentExtractor().extract_metadata(html)

        assert len(metadata.main_text) == MAIN_TEXT_CHARS

    def test_empty_html_yields_empty_metadata(self) -> None:
        assert ContentExtractor().extract_metadata("") == PageMetadata()

    def test_nul_bytes_removed(self) -> None:
        metadata = ContentExtractor().extract_metadata(_NUL_BYTES_HTML)

        assert "\x00" not in metadata.title
        assert "\x00" not in metadata.main_text


# ---------------------------------------------------------------------------
# Readability
# ---------------------------------------------------------------------------


class TestExtractReadability:
    def test_isolates_article_content(self, article_html: str) -> None:
        result = ContentExtractor().extract(article_html, "https://example.com/article")

        assert result.readability is not None
        readability = result.readability
        assert "first paragraph of the article" in readability.text_content
        assert readability.length == len(readability.text_content)
        assert readability.excerpt == "An example"
        assert readability.content

    def test_byline_and_site_name_from_trafilatura(self, article_html: str) -> None:
        meta = MagicMock(author="Trafilatura Author", sitename="Trafilatura Site")
        with patch(
            "post_crawler.crawler.content_extractor.trafilatura.extract_metadata",
            return_value=meta,
        ):
            readability = ContentExtractor().extract_readability(article_html)

        assert readability is not None
        assert readability.byline == "Trafilatura Author"
        assert readability.site_name == "Trafilatura Site"

    def test_byline_and_site_name_fall_back_to_meta_tags(self, article_html: str) -> None:
        with patch(
            "post_crawler.crawler.content_extractor.trafilatura.extract_metadata",
            return_value=None,
        ):
            readability = ContentExtractor().extract_readability(article_html)

        assert readability is not None
        assert readability.byline == "Jane Reporter"
        assert readability.site_name == "Example News"

    def test_excerpt_uses_first_paragraph_without_description(self) -> None:
        html = (
            "<html><body><article>"
            + "<p>" + ("Lead sentence of a long story. " * 20) + "</p>"
            + "<p>" + ("More detail follows here. " * 20) + "</p>"
            + "</article></body></html>"
        )

        readability = ContentExtractor().extract_readability(html)

        assert readability is not None
        assert readability.excerpt.startswith("Lead sentence of a long story.")
        assert len(readability.excerpt) <= EXCERPT_CHARS

    def test_page_without_title_has_empty_readability_title(self) -> None:
        readability = ContentExtractor().extract_readability("<html><body><p>Hi</p></body></html>")

        assert readability is not None
        assert readability.title == ""

    def test_sparse_document_yields_none(self) -> None:
        result = ContentExtractor().extract(_JS_ONLY_HTML)

        assert result.readability is None
        assert result.metadata == PageMetadata()

    def test_readability_failure_keeps_metadata(self, article_html: str) -> None:
        with patch(
            "post_crawler.crawler.content_extractor.Document",
            side_effect=ValueError("unparseable"),
        ):
            result = ContentExtractor().extract(article_html)

        assert result.readability is None
        assert result.metadata.title == "Example"
        assert result.metadata.description == "An example"
