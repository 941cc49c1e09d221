"""
Extraction dispatch: map a free-text extraction spec onto one extractor.

Classification is a pure function of the spec string. The page HTML is
snapshotted once and handed to the BeautifulSoup extractors in
``parsers.page_extractors``.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from parsers.page_extractors import (
    Extractor,
    build_soup,
    count_elements_recursive,
    extract_by_css,
    extract_generic,
    extract_headings,
    extract_images,
    extract_links,
    extract_products,
    extract_text_content,
)
from utils.error_handling import ExtractionError
from utils.logger import get_logger

from .types import ExtractionKind

logger = get_logger(__name__)

PRODUCT_KEYWORDS = ("product", "price", "title", "name", "cost", "item")
IMAGE_KEYWORDS = ("image", "img", "photo", "picture", "gallery")
LINK_KEYWORDS = ("link", "url", "href", "anchor")
HEADING_KEYWORDS = ("heading", "title", "h1", "h2", "h3", "h4", "h5", "h6")
TEXT_KEYWORDS = ("text", "content", "paragraph", "description", "article")

CSS_SELECTOR_PATTERNS = (
    re.compile(r"^[.#][\w-]+"),
    re.compile(r"^\w+$"),
    re.compile(r"\[[\w-]+(?:[~|^$*]?=[^\]]*)?\]"),
    re.compile(r":[\w-]+"),
)

_KEYWORD_ORDER = (
    (ExtractionKind.PRODUCTS, PRODUCT_KEYWORDS),
    (ExtractionKind.IMAGES, IMAGE_KEYWORDS),
    (ExtractionKind.LINKS, LINK_KEYWORDS),
    (ExtractionKind.HEADINGS, HEADING_KEYWORDS),
    (ExtractionKind.TEXT, TEXT_KEYWORDS),
)

DEFAULT_EXTRACTORS: Dict[ExtractionKind, Extractor] = {
    ExtractionKind.PRODUCTS: extract_products,
    ExtractionKind.IMAGES: extract_images,
    ExtractionKind.LINKS: extract_links,
    ExtractionKind.HEADINGS: extract_headings,
    ExtractionKind.TEXT: extract_text_content,
    ExtractionKind.CSS_SELECTOR: extract_by_css,
    ExtractionKind.GENERIC: extract_generic,
}


def is_css_selector(spec: str) -> bool:
    candidate = spec.strip()
    return any(pattern.search(candidate) for pattern in CSS_SELECTOR_PATTERNS)


def classify_spec(spec: str) -> ExtractionKind:
    """Pick the extractor family for ``spec``.

    Keyword families are checked in priority order against the lower-cased
    spec and the first hit wins, so "title" lands on products before
    headings. CSS-looking specs come next and anything else falls back to
    the generic scan.
    """
    lowered = spec.lower()
    for kind, keywords in _KEYWORD_ORDER:
        if any(keyword in lowered for keyword in keywords):
            return kind
    if is_css_selector(spec):
        return ExtractionKind.CSS_SELECTOR
    return ExtractionKind.GENERIC


class ExtractionDispatcher:
    """Runs the extractor matching a spec against a live page's HTML."""

    def __init__(self, extractors: Optional[Dict[ExtractionKind, Extractor]] = None):
        self.extractors = dict(DEFAULT_EXTRACTORS)
        if extractors:
            self.extractors.update(extractors)

    async def extract(self, page, spec: str, source_url: str) -> Dict[str, Any]:
        kind = classify_spec(spec)
        try:
            html = await page.content()
            payload = self.extract_from_html(html, spec, source_url, kind)
        except Exception as e:
            logger.warning("Extraction failed for %s (%s): %s", source_url, kind.value, e)
            raise ExtractionError(
                "Failed to extract data from the page",
                {"spec": spec, "sourceUrl": source_url, "cause": str(e)},
            ) from e

        logger.debug(
            "Extracted %d elements from %s via %s",
            payload["totalElements"],
            source_url,
            payload["extractionMethod"],
        )
        return payload

    def extract_from_html(
        self,
        html: str,
        spec: str,
        source_url: str,
        kind: Optional[ExtractionKind] = None,
    ) -> Dict[str, Any]:
        kind = kind or classify_spec(spec)
        soup: BeautifulSoup = build_soup(html)
        data = dict(self.extractors[kind](soup, spec, source_url))
        data["extractedAt"] = datetime.now(timezone.utc).isoformat()
        data["sourceUrl"] = source_url
        data["extractionMethod"] = kind.method_label
        data["totalElements"] = count_elements_recursive(data)
        return data
