"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

RUN_STARTED = "started"
RUN_COMPLETED = "completed"
RUN_PARTIAL = "partial"
RUN_FAILED = "failed"
TERMINAL_STATUSES = (RUN_COMPLETED, RUN_PARTIAL, RUN_FAILED)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Product(Base):
    """Latest scraped snapshot of one product on one source."""

    __tablename__ = "products"

    # Fields compared on re-scrape; a difference in any of them counts as an update
    TRACKED_FIELDS = (
        "title",
        "description",
        "price",
        "sale_price",
        "offers",
        "inventory_status",
        "rating",
        "review_count",
        "brand",
        "model_name",
        "color",
        "image_urls",
        "video_urls",
        "attributes",
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(128), nullable=False)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    sale_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    offers: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rating: Mapped[Optional[Decimal]] = mapped_column(Numeric(3, 2), nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    model_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    inventory_status: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    image_urls: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    video_urls: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    attributes: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("source", "sku", name="uq_products_source_sku"),
        CheckConstraint(
            "sale_price IS NULL OR price IS NULL OR sale_price <= price",
            name="ck_products_sale_price_le_price",
        ),
        CheckConstraint("rating IS NULL OR (rating >= 0 AND rating <= 5)", name="ck_products_rating"),
    )

    @property
    def effective_price(self) -> Optional[Decimal]:
        """Sale price when present, otherwise the list price."""
        return self.sale_price if self.sale_price is not None else self.price

    @property
    def discount_percentage(self) -> Optional[float]:
        if self.sale_price is None or not self.price:
            return None
        return round(float((self.price - self.sale_price) / self.price * 100), 2)

    @property
    def primary_image(self) -> Optional[str]:
        return self.image_urls[0] if self.image_urls else None


class ScrapeRun(Base):
    """Ledger entry for one scraping run of one source."""

    __tablename__ = "scrape_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=RUN_STARTED, nullable=False)  # started, completed, partial, failed
    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Statistics
    products_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    products_added: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    products_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    products_deactivated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pages_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Error trail
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_trail: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def formatted_duration(self) -> str:
        """Duration as '1h 2m 3s' style text, or 'N/A' while running."""
        if self.duration_seconds is None:
            return "N/A"
        hours, remainder = divmod(self.duration_seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"
