"""Tests for product upsert and staleness deactivation."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from shopcrawl.db.models import Product
from shopcrawl.db.repository import (
    ACTION_CREATED,
    ACTION_UNCHANGED,
    ACTION_UPDATED,
    ProductRepository,
    RecordValidationError,
    values_differ,
)

LAPTOP = {
    "title": "Dell Inspiron 15",
    "url": "https://shop.example.com/p/A1",
    "price": Decimal("1000.00"),
    "image_urls": ["https://img.example.com/a1.jpg"],
    "attributes": {"RAM": "16 GB"},
}


@pytest.fixture
def repository(session_factory):
    return ProductRepository(session_factory)


async def age_products(session_factory, source: str, seen_at: datetime):
    async with session_factory() as db:
        await db.execute(
            update(Product).where(Product.source == source).values(last_seen_at=seen_at)
        )
        await db.commit()


class TestUpsert:
    @pytest.mark.asyncio
    async def test_create(self, repository):
        result = await repository.upsert("shop", "A1", LAPTOP)

        assert result.action == ACTION_CREATED
        product = await repository.find_by_key("shop", "A1")
        assert product.title == "Dell Inspiron 15"
        assert product.is_active is True
        assert product.price == Decimal("1000.00")
        assert product.image_urls == ["https://img.example.com/a1.jpg"]

    @pytest.mark.asyncio
    async def test_identical_upsert_is_unchanged_and_touches_last_seen(self, repository, session_factory):
        await repository.upsert("shop", "A1", LAPTOP)
        earlier = datetime.utcnow() - timedelta(days=1)
        await age_products(session_factory, "shop", earlier)

        result = await repository.upsert("shop", "A1", dict(LAPTOP))

        assert result.action == ACTION_UNCHANGED
        product = await repository.find_by_key("shop", "A1")
        assert product.title == LAPTOP["title"]
        assert product.last_seen_at > earlier

    @pytest.mark.asyncio
    async def test_changed_title_is_updated(self, repository):
        await repository.upsert("shop", "A1", LAPTOP)

        result = await repository.upsert("shop", "A1", {**LAPTOP, "title": "Dell Inspiron 15 (2024)"})

        assert result.action == ACTION_UPDATED
        assert result.changed_fields == ["title"]
        product = await repository.find_by_key("shop", "A1")
        assert product.title == "Dell Inspiron 15 (2024)"
        assert product.price == Decimal("1000.00")

    @pytest.mark.asyncio
    async def test_sale_ending_below_old_sale_price_replaces_record(self, repository):
        await repository.upsert("shop", "A1", {
            **LAPTOP, "sale_price": Decimal("900.00"), "rating": Decimal("4.5"), "review_count": 12,
        })

        result = await repository.upsert("shop", "A1", {**LAPTOP, "price": Decimal("800.00")})

        assert result.action == ACTION_UPDATED
        assert sorted(result.changed_fields) == ["price", "rating", "review_count", "sale_price"]
        product = await repository.find_by_key("shop", "A1")
        assert product.price == Decimal("800.00")
        assert product.sale_price is None
        assert product.rating is None
        assert product.review_count == 0

    @pytest.mark.asyncio
    async def test_vanished_field_is_an_update(self, repository):
        await repository.upsert("shop", "A1", {**LAPTOP, "sale_price": Decimal("900.00")})

        result = await repository.upsert("shop", "A1", LAPTOP)

        assert result.action == ACTION_UPDATED
        assert result.changed_fields == ["sale_price"]
        assert (await repository.find_by_key("shop", "A1")).sale_price is None

    @pytest.mark.asyncio
    async def test_equal_decimal_and_json_values_are_unchanged(self, repository):
        await repository.upsert("shop", "A1", LAPTOP)

        result = await repository.upsert("shop", "A1", {
            **LAPTOP,
            "price": Decimal("1000"),
            "image_urls": '["https://img.example.com/a1.jpg"]',
        })

        assert result.action == ACTION_UNCHANGED

    @pytest.mark.asyncio
    async def test_one_row_per_key(self, repository, session_factory):
        for title in ("a", "b", "b", "c"):
            await repository.upsert("shop", "A1", {**LAPTOP, "title": title})
        await repository.upsert("other", "A1", LAPTOP)

        async with session_factory() as db:
            count = (await db.execute(
                select(func.count(Product.id)).where(Product.source == "shop", Product.sku == "A1")
            )).scalar_one()
        assert count == 1

    @pytest.mark.asyncio
    async def test_missing_title_is_rejected(self, repository):
        with pytest.raises(RecordValidationError) as exc_info:
            await repository.upsert("shop", "A1", {"price": Decimal("1000")})

        assert exc_info.value.field == "title"
        assert await repository.find_by_key("shop", "A1") is None

    @pytest.mark.asyncio
    async def test_blank_sku_is_rejected(self, repository):
        with pytest.raises(RecordValidationError) as exc_info:
            await repository.upsert("shop", " ", LAPTOP)
        assert exc_info.value.field == "sku"

    @pytest.mark.asyncio
    async def test_reseen_inactive_product_is_reactivated(self, repository, session_factory):
        await repository.upsert("shop", "A1", LAPTOP)
        await age_products(session_factory, "shop", datetime.utcnow() - timedelta(days=2))
        await repository.deactivate_stale("shop", datetime.utcnow() - timedelta(hours=1))

        result = await repository.upsert("shop", "A1", LAPTOP)

        assert result.action == ACTION_UPDATED
        assert "is_active" in result.changed_fields
        assert (await repository.find_by_key("shop", "A1")).is_active is True


class TestStaleness:
    @pytest.mark.asyncio
    async def test_only_unseen_products_are_deactivated(self, repository, session_factory):
        for n in range(10):
            await repository.upsert("shop", f"P{n}", {**LAPTOP, "title": f"Laptop {n}"})
        await repository.upsert("other", "P0", LAPTOP)
        await age_products(session_factory, "shop", datetime.utcnow() - timedelta(days=1))
        await age_products(session_factory, "other", datetime.utcnow() - timedelta(days=1))

        run_started = datetime.utcnow()
        for n in range(6):
            await repository.upsert("shop", f"P{n}", {**LAPTOP, "title": f"Laptop {n}"})

        deactivated = await repository.deactivate_stale("shop", run_started - timedelta(hours=1))

        assert deactivated == 4
        stats = await repository.source_stats("shop")
        assert stats["active_products"] == 6
        assert stats["inactive_products"] == 4
        assert (await repository.find_by_key("other", "P0")).is_active is True

    @pytest.mark.asyncio
    async def test_cutoff_boundary(self, repository, session_factory):
        cutoff = datetime(2024, 6, 1, 12, 0, 0)
        await repository.upsert("shop", "OLD", LAPTOP)
        await repository.upsert("shop", "EDGE", LAPTOP)
        async with session_factory() as db:
            await db.execute(update(Product).where(Product.sku == "OLD").values(
                last_seen_at=cutoff - timedelta(seconds=1)))
            await db.execute(update(Product).where(Product.sku == "EDGE").values(last_seen_at=cutoff))
            await db.commit()

        assert await repository.deactivate_stale("shop", cutoff) == 1
        assert (await repository.find_by_key("shop", "OLD")).is_active is False
        assert (await repository.find_by_key("shop", "EDGE")).is_active is True

    @pytest.mark.asyncio
    async def test_already_inactive_not_counted_again(self, repository, session_factory):
        await repository.upsert("shop", "A1", LAPTOP)
        await age_products(session_factory, "shop", datetime.utcnow() - timedelta(days=1))
        cutoff = datetime.utcnow() - timedelta(hours=1)

        assert await repository.deactivate_stale("shop", cutoff) == 1
        assert await repository.deactivate_stale("shop", cutoff) == 0


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_source_stats_prices(self, repository):
        await repository.upsert("shop", "A1", {**LAPTOP, "price": Decimal("1000")})
        await repository.upsert("shop", "A2", {**LAPTOP, "price": Decimal("3000")})

        stats = await repository.source_stats("shop")

        assert stats["total_products"] == 2
        assert Decimal(str(stats["min_price"])) == Decimal("1000")
        assert Decimal(str(stats["max_price"])) == Decimal("3000")

    @pytest.mark.asyncio
    async def test_purge_inactive(self, repository, session_factory):
        await repository.upsert("shop", "A1", LAPTOP)
        await repository.upsert("shop", "A2", LAPTOP)
        async with session_factory() as db:
            await db.execute(update(Product).where(Product.sku == "A1").values(
                is_active=False, updated_at=datetime.utcnow() - timedelta(days=120)))
            await db.commit()

        assert await repository.purge_inactive(older_than_days=90) == 1
        assert await repository.find_by_key("shop", "A1") is None
        assert await repository.find_by_key("shop", "A2") is not None


class TestValuesDiffer:
    def test_numbers_compare_by_value(self):
        assert values_differ("price", Decimal("1000.00"), "1000") is False
        assert values_differ("price", Decimal("1000.00"), Decimal("999.99")) is True

    def test_none_handling(self):
        assert values_differ("brand", None, None) is False
        assert values_differ("brand", None, "HP") is True
        assert values_differ("brand", "HP", None) is True

    def test_json_decoded(self):
        assert values_differ("attributes", '{"RAM": "16 GB"}', {"RAM": "16 GB"}) is False
