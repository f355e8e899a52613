"""Canonical PropertyRecord — the strongly-typed in-memory representation of a listing.

This is what the corpus index, the candidate selector and the scorer work on.
It is independent from the ORM model so the search core never touches a DB
session; `app.models.property_model.Property` converts to/from it.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TransactionType(str, Enum):
    SALE = "sale"
    LONG_TERM_RENTAL = "long_term_rental"
    SHORT_TERM_RENTAL = "short_term_rental"


# Numeric codes used by older feed sessions
PROPERTY_TYPE_CODES = {
    0: "apartment",
    1: "villa",
    2: "townhouse",
    3: "penthouse",
    4: "plot",
    5: "commercial",
    6: "office",
    7: "garage",
    8: "warehouse",
    9: "country-house",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PropertyRecord(BaseModel):
    """Property as stored in the corpus."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = Field(None, description="Stable derived identity")
    feed_source: str = "manual"
    reference: Optional[str] = Field(None, description="Reference on the originating feed")
    transaction_type: TransactionType = TransactionType.SALE
    property_type: str

    address: Optional[str] = None
    street: Optional[str] = None
    urbanization: Optional[str] = None
    suburb: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    coordinate_confidence: Optional[float] = Field(None, ge=0, le=1)

    build_area: Optional[float] = Field(None, ge=0)
    plot_area: Optional[float] = Field(None, ge=0)
    terrace_area: Optional[float] = Field(None, ge=0)
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[int] = Field(None, ge=0)

    sale_price: Optional[float] = Field(None, ge=0)
    rental_price: Optional[float] = Field(None, ge=0, description="Monthly or weekly rent")

    features: Set[str] = set()

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("property_type", mode="before")
    @classmethod
    def normalize_property_type(cls, v):
        if isinstance(v, int) and v in PROPERTY_TYPE_CODES:
            return PROPERTY_TYPE_CODES[v]
        if isinstance(v, str):
            return v.strip().lower().replace(" ", "-")
        return v

    @field_validator("features", mode="before")
    @classmethod
    def normalize_features(cls, v):
        if v is None:
            return set()
        return {str(f).strip().lower() for f in v if str(f).strip()}

    @model_validator(mode="after")
    def check_single_price(self) -> "PropertyRecord":
        if self.sale_price is not None and self.rental_price is not None:
            raise ValueError("a property carries either a sale price or a rental price, not both")
        if self.transaction_type == TransactionType.SALE and self.rental_price is not None:
            raise ValueError("sale listings cannot carry a rental price")
        if self.transaction_type != TransactionType.SALE and self.sale_price is not None:
            raise ValueError("rental listings cannot carry a sale price")
        return self

    @property
    def price(self) -> Optional[float]:
        if self.transaction_type == TransactionType.SALE:
            return self.sale_price
        return self.rental_price

    @property
    def effective_area(self) -> Optional[float]:
        for area in (self.build_area, self.plot_area, self.terrace_area):
            if area:
                return area
        return None

    @property
    def is_searchable(self) -> bool:
        return bool(self.city and self.province and self.price and self.effective_area)


class PropertyUpsert(BaseModel):
    """Bulk upsert payload for the corpus."""
    properties: list[PropertyRecord] = Field(..., min_length=1)
