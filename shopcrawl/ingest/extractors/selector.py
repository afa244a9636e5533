"""Extractor driven entirely by CSS selectors."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from shopcrawl.ingest.base import Extractor

logger = logging.getLogger(__name__)

# Fields that collect every match instead of the first one
MULTI_VALUE_FIELDS = ("image_urls", "video_urls")
# Fields whose values are links and get resolved against the page URL
URL_FIELDS = ("url", "image_urls", "video_urls")


def _split_selector(selector: str) -> tuple[str, Optional[str]]:
    """'img.main@src' -> ('img.main', 'src'); plain selectors read node text."""
    if "@" in selector:
        css, attr = selector.rsplit("@", 1)
        return css.strip(), attr.strip() or None
    return selector.strip(), None


def _node_value(node: Node, attr: Optional[str]) -> Optional[str]:
    if attr:
        return node.attributes.get(attr)
    return node.text(separator=" ", strip=True)


@dataclass
class SelectorSet:
    """
    CSS selectors for one site.

    `item_link` picks product anchors on a listing page. `fields` maps record
    field names to selectors; append '@attr' to read an attribute instead of
    the text. Technical detail tables are read with `attribute_row`, `attribute_name` and
    `attribute_value`, relative to each row.
    """

    item_link: str
    fields: dict[str, str] = field(default_factory=dict)
    attribute_row: Optional[str] = None
    attribute_name: str = "th"
    attribute_value: str = "td"


class CssSelectorExtractor(Extractor):
    """Generic extractor configured with a SelectorSet."""

    def __init__(self, selectors: SelectorSet):
        self.selectors = selectors

    def list_item_urls(self, page_content: str, page_url: str) -> list[str]:
        parser = HTMLParser(page_content)
        css, attr = _split_selector(self.selectors.item_link)
        urls = []
        for node in parser.css(css):
            href = node.attributes.get(attr or "href")
            if not href or href.startswith(("#", "javascript:")):
                continue
            url = urljoin(page_url, href)
            if url not in urls:
                urls.append(url)
        return urls

    def extract_item(self, page_content: str, item_url: str) -> dict[str, Any]:
        parser = HTMLParser(page_content)
        record: dict[str, Any] = {}

        for name, selector in self.selectors.fields.items():
            css, attr = _split_selector(selector)
            if name in MULTI_VALUE_FIELDS:
                values = [_node_value(n, attr) for n in parser.css(css)]
                values = [v for v in values if v]
                if name in URL_FIELDS:
                    values = [urljoin(item_url, v) for v in values]
                if values:
                    record[name] = values
                continue

            node = parser.css_first(css)
            value = _node_value(node, attr) if node is not None else None
            if value:
                record[name] = urljoin(item_url, value) if name in URL_FIELDS else value

        if self.selectors.attribute_row:
            attributes = self._extract_attributes(parser)
            if attributes:
                record["attributes"] = attributes

        if not record:
            logger.debug(f"No fields matched on {item_url}")
        return record

    def _extract_attributes(self, parser: HTMLParser) -> dict[str, str]:
        attributes: dict[str, str] = {}
        for row in parser.css(self.selectors.attribute_row):
            name_node = row.css_first(self.selectors.attribute_name)
            value_node = row.css_first(self.selectors.attribute_value)
            if name_node is None or value_node is None:
                continue
            name = name_node.text(separator=" ", strip=True)
            value = value_node.text(separator=" ", strip=True)
            if name and value:
                attributes[name] = value
        return attributes
