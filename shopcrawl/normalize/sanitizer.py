"""Normalize and validate raw extracted product fields before persistence."""

import html
import json
import logging
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional
from urllib.parse import urlparse

from selectolax.parser import HTMLParser

from shopcrawl.config import settings

logger = logging.getLogger(__name__)

STRING_FIELDS = ("source", "sku", "title", "brand", "model_name", "color", "inventory_status")
TEXT_FIELDS = ("description", "offers")
PRICE_FIELDS = ("price", "sale_price")
URL_ARRAY_FIELDS = ("image_urls", "video_urls")
KNOWN_FIELDS = (
    STRING_FIELDS + TEXT_FIELDS + PRICE_FIELDS + URL_ARRAY_FIELDS
    + ("url", "rating", "review_count", "attributes")
)

_WHITESPACE_RE = re.compile(r"\s+")
# Letters, digits, whitespace and a small set of punctuation survive in short strings
_UNSAFE_CHARS_RE = re.compile(r"[^\w\s\-.,()&/'\"+:%#]")
_PRICE_CHARS_RE = re.compile(r"[^\d.,]")
_FIRST_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)?)")
_SPLIT_RE = re.compile(r"[,;|]")
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)

CENTS = Decimal("0.01")

SKU_PATTERNS = {
    "amazon": [
        r"/dp/([A-Z0-9]{10})",
        r"/gp/product/([A-Z0-9]{10})",
        r"asin[=:]([A-Z0-9]{10})",
    ],
    "flipkart": [
        r"pid=([A-Z0-9]+)",
        r"/p/(itm[a-zA-Z0-9]+)",
        r"/([A-Z0-9]{16})",
    ],
    "default": [
        r"product[_-]?id[=:]([A-Za-z0-9-]+)",
        r"sku[=:]([A-Za-z0-9-]+)",
        r"/p/([A-Za-z0-9-]+)",
        r"/product/([0-9]+)",
        r"[?&]id=([A-Za-z0-9-]+)",
    ],
}

BRAND_CANONICAL = {
    "hp": "HP",
    "dell": "Dell",
    "lenovo": "Lenovo",
    "asus": "ASUS",
    "acer": "Acer",
    "apple": "Apple",
    "msi": "MSI",
    "samsung": "Samsung",
    "lg": "LG",
    "sony": "Sony",
    "toshiba": "Toshiba",
    "fujitsu": "Fujitsu",
    "alienware": "Alienware",
    "razer": "Razer",
}


def strip_markup(value: str) -> str:
    """Drop HTML tags (and script/style bodies) and decode entities."""
    if "<" not in value:
        return html.unescape(value)
    tree = HTMLParser(value)
    for node in tree.css("script, style"):
        node.decompose()
    root = tree.body or tree.root
    return root.text(separator=" ") if root else ""


def _truncate(value: Optional[str], max_length: Optional[int]) -> Optional[str]:
    if value and max_length and len(value) > max_length:
        return value[:max_length].rstrip()
    return value


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


class Sanitizer:
    """
    Turns an extractor's raw field map into clean, typed values.

    `sanitize` never raises: a value that cannot be cleaned is dropped and
    logged, and empty fields are left out of the result entirely.
    """

    def __init__(
        self,
        price_range: Optional[tuple[float, float]] = None,
        max_field_lengths: Optional[dict[str, int]] = None,
    ):
        low, high = price_range or settings.price_valid_range
        self.price_min = Decimal(str(low))
        self.price_max = Decimal(str(high))
        self.max_field_lengths = (
            settings.max_field_lengths if max_field_lengths is None else max_field_lengths
        )

    def sanitize(self, raw: dict[str, Any]) -> dict[str, Any]:
        """
        Sanitize a full record.

        Args:
            raw: Field map from an extractor

        Returns:
            Clean field map containing only non-empty values
        """
        clean: dict[str, Any] = {}

        for name, value in raw.items():
            try:
                clean[name] = self._sanitize_field(name, value)
            except Exception as e:
                logger.warning(f"Dropping unparseable field '{name}': {e.__class__.__name__}: {e}")

        # Unknown scalar fields are per-source technical details
        extras = {k: v for k, v in clean.items() if k not in KNOWN_FIELDS}
        for name in extras:
            del clean[name]
        if extras:
            attributes = dict(clean.get("attributes") or {})
            for name, value in extras.items():
                if not _is_empty(value):
                    attributes.setdefault(name, value)
            clean["attributes"] = attributes or None

        if clean.get("brand"):
            clean["brand"] = self.normalize_brand(clean["brand"])

        price, sale_price = clean.get("price"), clean.get("sale_price")
        if price is not None and sale_price is not None and sale_price > price:
            logger.warning(
                f"Sale price {sale_price} exceeds price {price} for sku={clean.get('sku')}, dropping sale price"
            )
            clean["sale_price"] = None

        return {k: v for k, v in clean.items() if not _is_empty(v)}

    def _sanitize_field(self, name: str, value: Any) -> Any:
        max_length = self.max_field_lengths.get(name)
        if name in STRING_FIELDS:
            return self.sanitize_string(value, max_length)
        if name in TEXT_FIELDS:
            return self.sanitize_text(value, max_length)
        if name in PRICE_FIELDS:
            return self.sanitize_price(value)
        if name in URL_ARRAY_FIELDS:
            return self.sanitize_url_array(value)
        if name == "url":
            return self.sanitize_url(value)
        if name == "rating":
            return self.sanitize_rating(value)
        if name == "review_count":
            return self.sanitize_integer(value)
        if name == "attributes":
            return self.sanitize_mapping(value)
        if isinstance(value, (list, tuple)):
            items = self.sanitize_array(list(value))
            return ", ".join(str(i) for i in items) if items else None
        if isinstance(value, dict):
            return self.sanitize_mapping(value)
        return self.sanitize_string(value)

    @staticmethod
    def sanitize_string(value: Any, max_length: Optional[int] = None) -> Optional[str]:
        """Strip markup and unsafe characters, collapse whitespace, truncate."""
        if value is None or value == "":
            return None
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value if v is not None)
        text = _WHITESPACE_RE.sub(" ", strip_markup(str(value))).strip()
        text = _UNSAFE_CHARS_RE.sub("", text)
        text = _WHITESPACE_RE.sub(" ", text).strip()
        return _truncate(text, max_length) or None

    @staticmethod
    def sanitize_text(value: Any, max_length: Optional[int] = None) -> Optional[str]:
        """Like sanitize_string but keeps all printable characters."""
        if value is None or value == "":
            return None
        text = _WHITESPACE_RE.sub(" ", strip_markup(str(value))).strip()
        return _truncate(text, max_length) or None

    @staticmethod
    def sanitize_url(value: Any) -> Optional[str]:
        """Ensure an absolute http(s) URL, adding https:// when no scheme is given."""
        if not isinstance(value, str) or not value.strip():
            return None
        url = value.strip()
        if url.startswith("//"):
            url = "https:" + url
        elif not _SCHEME_RE.match(url):
            url = "https://" + url

        parsed = urlparse(url)
        host = parsed.hostname or ""
        if not host or " " in url or ("." not in host and host != "localhost"):
            return None
        return url

    def sanitize_price(self, value: Any) -> Optional[Decimal]:
        """Parse a price and reject it when outside the configured sanity range."""
        if value is None or value == "" or isinstance(value, bool):
            return None

        if isinstance(value, str):
            cleaned = _PRICE_CHARS_RE.sub("", value).replace(",", "")
            if not cleaned:
                return None
            try:
                price = Decimal(cleaned)
            except InvalidOperation:
                logger.warning(f"Could not parse price from: {value!r}")
                return None
        else:
            try:
                price = Decimal(str(value))
            except InvalidOperation:
                return None

        if not price.is_finite() or price < self.price_min or price > self.price_max:
            logger.warning(
                f"Price {price} out of valid range [{self.price_min}, {self.price_max}], dropping"
            )
            return None

        return price.quantize(CENTS, rounding=ROUND_HALF_UP)

    @staticmethod
    def sanitize_rating(value: Any) -> Optional[Decimal]:
        """First number in the value, accepted only within 0 to 5."""
        if value is None or value == "" or isinstance(value, bool):
            return None
        if isinstance(value, str):
            match = _FIRST_NUMBER_RE.search(value)
            if not match:
                return None
            rating = Decimal(match.group(1))
        else:
            try:
                rating = Decimal(str(value))
            except InvalidOperation:
                return None

        if not rating.is_finite() or rating < 0 or rating > 5:
            logger.warning(f"Rating {rating} out of valid range [0, 5], dropping")
            return None
        return rating.quantize(CENTS, rounding=ROUND_HALF_UP)

    @staticmethod
    def sanitize_integer(value: Any) -> Optional[int]:
        """Digits-only integer ('1,234 ratings' -> 1234); None when no digits."""
        if value is None or value == "" or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value if value >= 0 else None
        if isinstance(value, (float, Decimal)):
            return int(value) if value >= 0 else None
        digits = re.sub(r"\D", "", str(value))
        return int(digits) if digits else None

    @classmethod
    def sanitize_array(cls, value: Any) -> Optional[list]:
        """
        Clean a list, a JSON array string, or delimited text (',', ';' or '|').

        Nested lists are cleaned recursively; empty items are dropped.
        """
        if value is None or value == "":
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                value = _SPLIT_RE.split(value)
        if isinstance(value, tuple):
            value = list(value)
        if not isinstance(value, list):
            return None

        items = []
        for item in value:
            if isinstance(item, (list, tuple)):
                cleaned = cls.sanitize_array(list(item))
            elif isinstance(item, dict):
                cleaned = cls.sanitize_mapping(item)
            elif isinstance(item, (int, float, Decimal)) and not isinstance(item, bool):
                cleaned = item
            else:
                cleaned = cls.sanitize_string(item)
            if not _is_empty(cleaned):
                items.append(cleaned)
        return items or None

    @classmethod
    def sanitize_url_array(cls, value: Any) -> Optional[list[str]]:
        """Clean each URL, dropping invalid ones and duplicates (order kept)."""
        if value is None or value == "":
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                value = _SPLIT_RE.split(value) if "|" in value or ";" in value else [value]
        if not isinstance(value, (list, tuple)):
            return None

        urls = []
        for item in value:
            url = cls.sanitize_url(item)
            if url and url not in urls:
                urls.append(url)
        return urls or None

    @classmethod
    def sanitize_mapping(cls, value: Any) -> Optional[dict[str, str]]:
        """Clean a name -> value mapping (or its JSON text) into string values."""
        if value is None or value == "":
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return None
        if not isinstance(value, dict):
            return None

        mapping: dict[str, str] = {}
        for key, item in value.items():
            name = cls.sanitize_string(key)
            if isinstance(item, (list, tuple)):
                parts = cls.sanitize_array(list(item)) or []
                text = ", ".join(str(p) for p in parts) or None
            elif isinstance(item, dict):
                nested = cls.sanitize_mapping(item) or {}
                text = "; ".join(f"{k}: {v}" for k, v in nested.items()) or None
            else:
                text = cls.sanitize_string(item)
            if name and text:
                mapping[name] = text
        return mapping or None

    @staticmethod
    def extract_sku(text: str, source: str) -> Optional[str]:
        """Pull a product identifier out of a URL or text using per-source patterns."""
        if not text:
            return None
        if source in SKU_PATTERNS and source != "default":
            patterns, flags = SKU_PATTERNS[source], 0
        else:
            patterns, flags = SKU_PATTERNS["default"], re.IGNORECASE
        for pattern in patterns:
            match = re.search(pattern, text, flags)
            if match:
                return match.group(1)
        return None

    @classmethod
    def normalize_brand(cls, brand: Optional[str]) -> Optional[str]:
        """Canonical casing for well-known brands; otherwise capitalize the first letter."""
        cleaned = cls.sanitize_string(brand)
        if not cleaned:
            return None
        canonical = BRAND_CANONICAL.get(cleaned.lower())
        if canonical:
            return canonical
        return cleaned[0].upper() + cleaned[1:]
