"""Metadata and main-content extraction from raw HTML.

Two independent passes run over the already-fetched HTML:

- **Metadata** (BeautifulSoup): ``<title>``, description, image, author and
  keywords from ``<meta name|property=...>`` tags, plus the first
  :data:`~post_crawler.crawler.config.MAIN_TEXT_CHARS` characters of
  visible body text.  Always attempted; never raises.
- **Readability** (``readability-lxml``): main-content isolation by
  paragraph density scoring.  Byline and site name come from
  ``trafilatura.extract_metadata`` with meta-tag fallbacks.  When the
  algorithm cannot produce content the result is ``None`` and metadata is
  returned on its own.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass

import trafilatura  # type: ignore[import-untyped]
from bs4 import BeautifulSoup
from lxml import html as lxml_html
from readability import Document  # type: ignore[import-untyped]

from post_crawler.crawler.config import EXCERPT_CHARS, MAIN_TEXT_CHARS, MAX_CONTENT_BYTES

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_INVISIBLE_TAGS: tuple[str, ...] = ("script", "style", "noscript", "template", "head")

#: Placeholder readability-lxml returns for a page without a <title>.
_READABILITY_NO_TITLE = "[no-title]"

# ---------------------------------------------------------------------------
# Output dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PageMetadata:
    """Metadata read from the document head and body.

    Missing values are empty strings, never ``None``.
    """

    title: str = ""
    description: str = ""
    image: str = ""
    author: str = ""
    keywords: str = ""
    main_text: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class ReadabilityResult:
    """Main article content isolated by the readability algorithm.

    Attributes:
        title: Article title as determined by readability.
        byline: Author line, or ``None``.
        content: Cleaned article HTML.
        text_content: Plain text of ``content``.
        length: Character count of ``text_content``.
        excerpt: Short summary (description or first paragraph).
        site_name: Publisher name, or ``None``.
    """

    title: str
    byline: str | None
    content: str
    text_content: str
    length: int
    excerpt: str
    site_name: str | None

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class ExtractedContent:
    """Result of :meth:`ContentExtractor.extract`."""

    metadata: PageMetadata
    readability: ReadabilityResult | None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _clean(text: str) -> str:
    # PostgreSQL rejects NUL bytes in text and JSON columns.
    return text.replace("\x00", "")


def _meta_content(soup: BeautifulSoup, name: str) -> str:
    """Return the ``content`` of the first ``<meta name|property=name>`` tag."""
    for attr in ("name", "property"):
        tag = soup.find("meta", attrs={attr: name})
        if tag is not None:
            content = tag.get("content")
            if content:
                return _collapse(_clean(str(content)))
    return ""


def _visible_text(soup: BeautifulSoup) -> str:
    body = soup.body or soup
    for tag in body.find_all(list(_INVISIBLE_TAGS)):
        tag.decompose()
    return _collapse(_clean(body.get_text(" ")))


def _truncate_bytes(text: str, limit: int) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    return encoded[:limit].decode("utf-8", errors="ignore")


def _readability_title(doc: Document) -> str:
    for title in (doc.short_title(), doc.title()):
        if title and title.strip() != _READABILITY_NO_TITLE:
            return title
    return ""


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class ContentExtractor:
    """Derives :class:`PageMetadata` and :class:`ReadabilityResult` from HTML.

    Stateless; one instance is shared by all jobs in a worker process.
    """

    def extract(self, html: str, url: str | None = None) -> ExtractedContent:
        """Extract metadata and readable content from ``html``.

        Args:
            html: Raw HTML of the loaded page (may be partial or malformed).
            url: Final page URL, used to resolve relative links.

        Returns:
            An :class:`ExtractedContent`; ``readability`` is ``None`` when no
            main content could be isolated.
        """
        metadata = self.extract_metadata(html)
        readability = self.extract_readability(html, url, metadata)
        return ExtractedContent(metadata=metadata, readability=readability)

    def extract_metadata(self, html: str) -> PageMetadata:
        """Read title, meta tags and leading body text."""
        if not html or not html.strip():
            return PageMetadata()
        try:
            soup = BeautifulSoup(html, "lxml")
        except Exception as exc:  # noqa: BLE001
            logger.warning("content_extractor: HTML parse failed: %s", exc)
            return PageMetadata()

        title = _collapse(_clean(soup.title.get_text())) if soup.title else ""
        metadata = PageMetadata(
            title=title,
            description=_meta_content(soup, "description") or _meta_content(soup, "og:description"),
            image=_meta_content(soup, "og:image"),
            author=_meta_content(soup, "author"),
            keywords=_meta_content(soup, "keywords"),
            main_text=_visible_text(soup)[:MAIN_TEXT_CHARS],
        )
        return metadata

    def extract_readability(
        self,
        html: str,
        url: str | None = None,
        metadata: PageMetadata | None = None,
    ) -> ReadabilityResult | None:
        """Run the readability algorithm; ``None`` when it yields nothing."""
        if not html or not html.strip():
            return None
        if metadata is None:
            metadata = self.extract_metadata(html)

        try:
            doc = Document(html, url=url)
            content = doc.summary(html_partial=True)
            title = _readability_title(doc) or metadata.title
        except Exception as exc:  # noqa: BLE001
            logger.info("content_extractor: readability failed for %s: %s", url, exc)
            return None

        try:
            text_content = _collapse(lxml_html.fromstring(content).text_content()) if content else ""
        except Exception as exc:  # noqa: BLE001
            logger.info("content_extractor: could not read readability output for %s: %s", url, exc)
            return None

        text_content = _clean(text_content)
        if not text_content:
            logger.info("content_extractor: readability found no main content for %s", url)
            return None

        byline, site_name = self._byline_and_site(html, url)
        if not byline:
            byline = metadata.author or None
        if not site_name:
            site_name = self._og_site_name(html)

        excerpt = metadata.description or self._first_paragraph(content) or text_content
        text_content = _truncate_bytes(text_content, MAX_CONTENT_BYTES)
        return ReadabilityResult(
            title=_collapse(_clean(title or "")),
            byline=byline,
            content=_truncate_bytes(_clean(content), MAX_CONTENT_BYTES),
            text_content=text_content,
            length=len(text_content),
            excerpt=excerpt[:EXCERPT_CHARS],
            site_name=site_name,
        )

    @staticmethod
    def _byline_and_site(html: str, url: str | None) -> tuple[str | None, str | None]:
        try:
            meta = trafilatura.extract_metadata(html, default_url=url)
        except Exception as exc:  # noqa: BLE001
            logger.debug("content_extractor: trafilatura metadata failed: %s", exc)
            return None, None
        if not meta:
            return None, None
        return getattr(meta, "author", None) or None, getattr(meta, "sitename", None) or None

    @staticmethod
    def _og_site_name(html: str) -> str | None:
        soup = BeautifulSoup(html, "lxml")
        return _meta_content(soup, "og:site_name") or None

    @staticmethod
    def _first_paragraph(content: str) -> str:
        soup = BeautifulSoup(content, "lxml")
        for paragraph in soup.find_all("p"):
            text = _collapse(paragraph.get_text(" "))
            if text:
                return text
        return ""
