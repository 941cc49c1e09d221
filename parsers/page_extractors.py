"""
DOM extractors over a parsed page snapshot.

Every extractor takes ``(soup, spec, source_url)`` and returns a partial
payload dict. They are pure functions of the HTML, so the dispatcher can
swap them out or test them without a browser.
"""

from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag

Extractor = Callable[[BeautifulSoup, str, str], Dict[str, Any]]

PRODUCT_SELECTORS = [
    '[data-testid*="product"]',
    ".product",
    ".item",
    '[class*="product"]',
    '[class*="item"]',
]
PRODUCT_TITLE_SELECTOR = 'h1, h2, h3, .title, [class*="title"], [class*="name"]'
PRODUCT_PRICE_SELECTOR = '.price, [class*="price"], [class*="cost"]'
HEADING_SELECTOR = "h1, h2, h3, h4, h5, h6"
TEXT_SELECTOR = "p, div, span, article"

MIN_PARAGRAPH_LENGTH = 20
MIN_GENERIC_TEXT_LENGTH = 10
GENERIC_RESULT_LIMIT = 50


def build_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def element_text(element: Tag) -> str:
    return " ".join(element.get_text(" ").split())


def class_name(element: Tag) -> Optional[str]:
    classes = element.get("class") or []
    if isinstance(classes, str):
        return classes or None
    return " ".join(classes) or None


def count_words(text: str) -> int:
    return len(text.split())


def make_absolute_url(base_url: str, url: str) -> str:
    return urljoin(base_url, url)


def extract_products(soup: BeautifulSoup, spec: str, source_url: str) -> Dict[str, Any]:
    products: List[Dict[str, Any]] = []
    for index, element in enumerate(soup.select(", ".join(PRODUCT_SELECTORS))):
        title = element.select_one(PRODUCT_TITLE_SELECTOR)
        price = element.select_one(PRODUCT_PRICE_SELECTOR)
        if title is None and price is None:
            continue
        products.append(
            {
                "id": index + 1,
                "title": (element_text(title) if title is not None else "") or "No title found",
                "price": (element_text(price) if price is not None else "") or "No price found",
                "element": element.name.upper(),
                "className": class_name(element),
            }
        )
    return {"products": products}


def extract_images(soup: BeautifulSoup, spec: str, source_url: str) -> Dict[str, Any]:
    images: List[Dict[str, Any]] = []
    for index, element in enumerate(soup.find_all("img")):
        src = element.get("src") or element.get("data-src") or element.get("data-lazy-src")
        if not src:
            continue
        src = make_absolute_url(source_url, src)
        if not src.startswith("http"):
            continue
        images.append(
            {
                "id": index + 1,
                "src": src,
                "alt": element.get("alt") or "No alt text",
                "width": element.get("width") or "unknown",
                "height": element.get("height") or "unknown",
            }
        )
    return {"images": images}


def extract_links(soup: BeautifulSoup, spec: str, source_url: str) -> Dict[str, Any]:
    links: List[Dict[str, Any]] = []
    for index, element in enumerate(soup.select("a[href]")):
        text = element_text(element)
        href = element.get("href", "").strip()
        if not href or not text:
            continue
        absolute = make_absolute_url(source_url, href)
        parts = urlsplit(absolute)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            continue
        links.append(
            {"id": index + 1, "text": text, "href": absolute, "domain": parts.hostname}
        )
    return {"links": links}


def extract_headings(soup: BeautifulSoup, spec: str, source_url: str) -> Dict[str, Any]:
    headings: List[Dict[str, Any]] = []
    for index, element in enumerate(soup.select(HEADING_SELECTOR)):
        text = element_text(element)
        if not text:
            continue
        headings.append(
            {
                "id": index + 1,
                "level": element.name.lower(),
                "text": text,
                "className": class_name(element),
            }
        )
    return {"headings": headings}


def extract_text_content(soup: BeautifulSoup, spec: str, source_url: str) -> Dict[str, Any]:
    paragraphs: List[Dict[str, Any]] = []
    for index, element in enumerate(soup.select(TEXT_SELECTOR)):
        text = element_text(element)
        if len(text) < MIN_PARAGRAPH_LENGTH:
            continue
        paragraphs.append({"id": index + 1, "text": text, "wordCount": count_words(text)})
    return {"textContent": paragraphs}


def extract_by_css(soup: BeautifulSoup, spec: str, source_url: str) -> Dict[str, Any]:
    elements: List[Dict[str, Any]] = []
    for index, element in enumerate(soup.select(spec.strip())):
        text = element_text(element)
        if not text:
            continue
        elements.append(
            {
                "id": index + 1,
                "text": text,
                "element": element.name.upper(),
                "className": class_name(element),
            }
        )
    return {"elements": elements}


def extract_generic(soup: BeautifulSoup, spec: str, source_url: str) -> Dict[str, Any]:
    """Keyword scan over every element's text and class names."""
    keywords = spec.lower().split()
    elements: List[Dict[str, Any]] = []
    for index, element in enumerate(soup.find_all(True)):
        text = element_text(element)
        lowered = text.lower()
        classes = (class_name(element) or "").lower()
        if len(text) <= MIN_GENERIC_TEXT_LENGTH:
            continue
        if not any(k in lowered or k in classes for k in keywords):
            continue
        elements.append(
            {
                "id": index + 1,
                "text": text,
                "element": element.name.upper(),
                "className": classes or None,
            }
        )
        if len(elements) >= GENERIC_RESULT_LIMIT:
            break
    return {"elements": elements}


def count_elements_recursive(data: Any) -> int:
    """Sum of the lengths of every list nested anywhere in ``data``."""
    if isinstance(data, list):
        return len(data) + sum(count_elements_recursive(item) for item in data)
    if isinstance(data, dict):
        return sum(count_elements_recursive(value) for value in data.values())
    return 0
