"""Tests for the CSS selector extractor and the extractor registry."""

import pytest

from shopcrawl.config import ConfigurationError
from shopcrawl.ingest.extractors.selector import CssSelectorExtractor, SelectorSet
from shopcrawl.ingest.registry import ExtractorRegistry

LISTING_HTML = """
<html><body>
  <div class="grid">
    <a class="product-link" href="/p/ab-1">Laptop one</a>
    <a class="product-link" href="https://shop.example.com/p/ab-2">Laptop two</a>
    <a class="product-link" href="/p/ab-1">Laptop one again</a>
    <a class="product-link" href="#reviews">Reviews</a>
    <a class="footer" href="/about">About</a>
  </div>
</body></html>
"""

ITEM_HTML = """
<html><body>
  <h1 class="title">  Dell   Inspiron 15 </h1>
  <span class="price">₹45,999.00</span>
  <span class="sku" data-sku="AB-1"></span>
  <div class="gallery">
    <img src="/img/1.jpg"><img src="https://cdn.example.com/2.jpg">
  </div>
  <table class="specs">
    <tr><th>RAM</th><td>16 GB</td></tr>
    <tr><th>Storage</th><td>512 GB SSD</td></tr>
    <tr><th></th><td>ignored</td></tr>
  </table>
</body></html>
"""


@pytest.fixture
def extractor():
    return CssSelectorExtractor(SelectorSet(
        item_link="a.product-link",
        fields={
            "title": "h1.title",
            "price": "span.price",
            "sku": "span.sku@data-sku",
            "brand": "span.brand",
            "image_urls": "div.gallery img@src",
        },
        attribute_row="table.specs tr",
    ))


class TestCssSelectorExtractor:
    def test_list_item_urls(self, extractor):
        urls = extractor.list_item_urls(LISTING_HTML, "https://shop.example.com/c/laptops?page=2")

        assert urls == [
            "https://shop.example.com/p/ab-1",
            "https://shop.example.com/p/ab-2",
        ]

    def test_listing_without_items(self, extractor):
        assert extractor.list_item_urls("<html><body>No results</body></html>", "https://shop.example.com/") == []

    def test_extract_item(self, extractor):
        record = extractor.extract_item(ITEM_HTML, "https://shop.example.com/p/ab-1")

        assert record["title"] == "Dell   Inspiron 15"
        assert record["price"] == "₹45,999.00"
        assert record["sku"] == "AB-1"
        assert "brand" not in record
        assert record["image_urls"] == [
            "https://shop.example.com/img/1.jpg",
            "https://cdn.example.com/2.jpg",
        ]
        assert record["attributes"] == {"RAM": "16 GB", "Storage": "512 GB SSD"}

    def test_extract_item_without_matches(self, extractor):
        assert extractor.extract_item("<html></html>", "https://shop.example.com/p/x") == {}


class TestExtractorRegistry:
    def test_register_and_get(self, extractor):
        registry = ExtractorRegistry()
        registry.register("shop", extractor)

        assert registry.get("shop") is extractor
        assert "shop" in registry
        assert registry.available() == ["shop"]

    def test_unknown_source(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ExtractorRegistry().get("nowhere")
        assert exc_info.value.source == "nowhere"

    def test_rejects_non_extractors(self):
        with pytest.raises(TypeError):
            ExtractorRegistry().register("shop", object())
