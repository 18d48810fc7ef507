"""Named CSS selector scraping over rendered markup.

Callers pass a map of field name to CSS selector; each field yields the
text of every match, or text plus attributes when asked. One broken
selector only empties its own field.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


def _attributes(el) -> dict[str, str]:
    attrs = {}
    for name, value in el.attrs.items():
        attrs[name] = value if isinstance(value, str) else " ".join(value)
    return attrs


def extract_by_css(html: str | BeautifulSoup, selector: str, include_attributes: bool = False) -> list[Any]:
    """Extract every element matching ``selector``.

    Args:
        html: Markup or an already parsed soup
        selector: CSS selector (e.g. "div.product-title", "a.nav-link")
        include_attributes: Return ``{"text", "attributes"}`` dicts instead of plain text

    Returns:
        List of extracted values, document order
    """
    soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html, "lxml")
    results = []
    for el in soup.select(selector):
        text = el.get_text(" ", strip=True)
        if include_attributes:
            results.append({"text": text, "attributes": _attributes(el)})
        else:
            results.append(text)
    return results


def extract_by_selectors(
    html: str,
    selectors: Mapping[str, str],
    include_attributes: bool = False,
) -> dict[str, list[Any]]:
    """Extract several named fields from one document.

    Example::

        extract_by_selectors(html, {"headline": "h1", "links": "a.nav"})
        # {"headline": ["Example Domain"], "links": ["Home", "About"]}
    """
    soup = BeautifulSoup(html, "lxml")
    results: dict[str, list[Any]] = {}
    for field_name, selector in selectors.items():
        try:
            results[field_name] = extract_by_css(soup, selector, include_attributes)
        except Exception as e:
            logger.warning(f"Selector '{selector}' for field '{field_name}' failed: {e}")
            results[field_name] = []
    return results
