"""Product persistence: idempotent upsert and staleness deactivation."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopcrawl.config import settings
from shopcrawl.db.models import Product

logger = logging.getLogger(__name__)

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_UNCHANGED = "unchanged"

JSON_FIELDS = ("image_urls", "video_urls", "attributes")
WRITABLE_FIELDS = Product.TRACKED_FIELDS + ("url",)
FIELD_DEFAULTS = {"review_count": 0}


class RecordValidationError(ValueError):
    """Raised when a record is missing a required field."""

    def __init__(self, field_name: str, source: Optional[str] = None, sku: Optional[str] = None):
        super().__init__(f"Required field '{field_name}' is missing or empty")
        self.field = field_name
        self.source = source
        self.sku = sku


@dataclass
class UpsertResult:
    """Outcome of a single upsert."""

    action: str
    product_id: int
    changed_fields: list[str] = field(default_factory=list)


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _as_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def values_differ(field_name: str, stored: Any, incoming: Any) -> bool:
    """Compare a stored column value with a freshly scraped one.

    JSON columns are compared decoded; numbers are compared by value so
    Decimal('1000') and Decimal('1000.00') are the same price.
    """
    if field_name in JSON_FIELDS:
        return _decode_json(stored) != _decode_json(incoming)

    if stored is None or incoming is None:
        return stored is not incoming

    if isinstance(stored, (int, Decimal)) and not isinstance(stored, bool):
        incoming_number = _as_decimal(incoming)
        if incoming_number is not None:
            return Decimal(str(stored)) != incoming_number

    return stored != incoming


class ProductRepository:
    """Reads and writes Product rows keyed by (source, sku)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def validate(source: str, sku: str, fields: dict[str, Any]) -> None:
        """Raise RecordValidationError if a required field is absent or blank."""
        record = {**fields, "source": source, "sku": sku}
        for name in settings.required_fields:
            value = record.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise RecordValidationError(name, source=source, sku=sku)

    async def find_by_key(self, source: str, sku: str) -> Optional[Product]:
        async with self._session_factory() as db:
            return await self._find(db, source, sku)

    async def upsert(self, source: str, sku: str, fields: dict[str, Any]) -> UpsertResult:
        """
        Create or refresh the record for (source, sku) in one transaction.

        Args:
            source: Source identifier
            sku: Source-specific product identifier
            fields: Sanitized field values

        Returns:
            UpsertResult with action created, updated or unchanged

        Raises:
            RecordValidationError: If a required field is missing
        """
        provided = sorted(k for k in fields if k in WRITABLE_FIELDS)
        ignored = set(fields) - set(provided) - {"source", "sku"}
        if ignored:
            logger.debug(f"Ignoring unknown fields for {source}/{sku}: {sorted(ignored)}")

        # The scraped record replaces the stored one; absent fields are cleared
        values = {name: fields.get(name) for name in WRITABLE_FIELDS}
        for name, default in FIELD_DEFAULTS.items():
            if values[name] is None:
                values[name] = default

        async with self._session_factory() as db:
            async with db.begin():
                self.validate(source, sku, fields)
                now = datetime.utcnow()
                product = await self._find(db, source, sku)

                if product is None:
                    product = Product(
                        source=source,
                        sku=sku,
                        is_active=True,
                        last_seen_at=now,
                        **values,
                    )
                    db.add(product)
                    await db.flush()
                    logger.debug(f"Added new product {source}/{sku}")
                    return UpsertResult(ACTION_CREATED, product.id, provided)

                changed = [
                    name for name, value in values.items()
                    if values_differ(name, getattr(product, name), value)
                ]
                product.last_seen_at = now

                if not changed and product.is_active:
                    return UpsertResult(ACTION_UNCHANGED, product.id)

                for name, value in values.items():
                    setattr(product, name, value)
                if not product.is_active:
                    product.is_active = True
                    changed.append("is_active")
                logger.debug(f"Updated product {source}/{sku}: {changed}")
                return UpsertResult(ACTION_UPDATED, product.id, changed)

    async def deactivate_stale(self, source: str, cutoff: datetime) -> int:
        """
        Mark active records of `source` last seen before `cutoff` as inactive.

        Returns:
            Number of records deactivated
        """
        stmt = (
            update(Product)
            .where(Product.source == source)
            .where(Product.is_active.is_(True))
            .where(Product.last_seen_at < cutoff)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as db:
            async with db.begin():
                result = await db.execute(stmt)

        count = result.rowcount or 0
        if count:
            logger.info(f"Deactivated {count} stale products for source: {source}")
        return count

    async def source_stats(self, source: str) -> dict[str, Any]:
        """Counts and price aggregates for one source."""
        active = (Product.source == source) & Product.is_active.is_(True)
        async with self._session_factory() as db:
            total = (await db.execute(
                select(func.count(Product.id)).where(Product.source == source)
            )).scalar_one()
            row = (await db.execute(
                select(
                    func.count(Product.id),
                    func.avg(Product.price),
                    func.min(Product.price),
                    func.max(Product.price),
                ).where(active)
            )).one()
            last_seen = (await db.execute(
                select(func.max(Product.last_seen_at)).where(Product.source == source)
            )).scalar_one()

        active_count, avg_price, min_price, max_price = row
        return {
            "total_products": total,
            "active_products": active_count,
            "inactive_products": total - active_count,
            "avg_price": avg_price,
            "min_price": min_price,
            "max_price": max_price,
            "last_seen_at": last_seen,
        }

    async def purge_inactive(self, older_than_days: int) -> int:
        """Delete inactive records untouched for `older_than_days` days."""
        cutoff = datetime.utcnow() - timedelta(days=older_than_days)
        stmt = (
            delete(Product)
            .where(Product.is_active.is_(False))
            .where(Product.updated_at < cutoff)
        )
        async with self._session_factory() as db:
            async with db.begin():
                result = await db.execute(stmt)
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} inactive products older than {older_than_days} days")
        return result.rowcount

    @staticmethod
    async def _find(db: AsyncSession, source: str, sku: str) -> Optional[Product]:
        result = await db.execute(
            select(Product).where(Product.source == source, Product.sku == sku)
        )
        return result.scalar_one_or_none()
