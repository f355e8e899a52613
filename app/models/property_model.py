"""Property SQLAlchemy model — persisted corpus of comparable candidates."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.schemas.property_schema import PropertyRecord


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(255), primary_key=True, comment="Stable derived identity")
    feed_source: Mapped[str] = mapped_column(String(50), index=True, default="manual")
    reference: Mapped[Optional[str]] = mapped_column(String(255), comment="Reference on the originating feed")
    transaction_type: Mapped[str] = mapped_column(String(30), index=True, comment="sale, long_term_rental, short_term_rental")
    property_type: Mapped[str] = mapped_column(String(50), index=True, comment="apartment, villa, penthouse, ...")

    address: Mapped[Optional[str]] = mapped_column(String(500))
    street: Mapped[Optional[str]] = mapped_column(String(255))
    urbanization: Mapped[Optional[str]] = mapped_column(String(255))
    suburb: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    province: Mapped[Optional[str]] = mapped_column(String(100))
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    coordinate_confidence: Mapped[Optional[float]] = mapped_column(Float, comment="Geocoder confidence 0-1")

    build_area: Mapped[Optional[float]] = mapped_column(Float)
    plot_area: Mapped[Optional[float]] = mapped_column(Float)
    terrace_area: Mapped[Optional[float]] = mapped_column(Float)
    bedrooms: Mapped[Optional[int]] = mapped_column(Integer)
    bathrooms: Mapped[Optional[int]] = mapped_column(Integer)

    sale_price: Mapped[Optional[float]] = mapped_column(Float)
    rental_price: Mapped[Optional[float]] = mapped_column(Float)

    features: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_properties_city_type", "city", "property_type"),
        Index("ix_properties_feed_reference", "feed_source", "reference"),
    )

    def __repr__(self) -> str:
        return f"<Property(id='{self.id}', type='{self.property_type}', city='{self.city}')>"

    def to_record(self) -> PropertyRecord:
        return PropertyRecord.model_validate(
            {
                "id": self.id,
                "feed_source": self.feed_source,
                "reference": self.reference,
                "transaction_type": self.transaction_type,
                "property_type": self.property_type,
                "address": self.address,
                "street": self.street,
                "urbanization": self.urbanization,
                "suburb": self.suburb,
                "city": self.city,
                "province": self.province,
                "latitude": self.latitude,
                "longitude": self.longitude,
                "coordinate_confidence": self.coordinate_confidence,
                "build_area": self.build_area,
                "plot_area": self.plot_area,
                "terrace_area": self.terrace_area,
                "bedrooms": self.bedrooms,
                "bathrooms": self.bathrooms,
                "sale_price": self.sale_price,
                "rental_price": self.rental_price,
                "features": self.features or [],
                "created_at": self.created_at,
                "updated_at": self.updated_at,
            }
        )

    def apply_record(self, record: PropertyRecord) -> None:
        """Copy every persisted field from the record (id excluded)."""
        data = record.model_dump(exclude={"id", "created_at"})
        data["transaction_type"] = record.transaction_type.value
        data["features"] = sorted(record.features)
        for key, value in data.items():
            setattr(self, key, value)

    @classmethod
    def from_record(cls, record: PropertyRecord) -> "Property":
        row = cls(id=record.id, created_at=record.created_at)
        row.apply_record(record)
        return row
