"""Learning engine persistence — relationship edges and discovered micro-locations."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Float, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class LocationRelationship(Base):
    """Directed same-tier edge "source co-occurs with target"."""

    __tablename__ = "location_relationships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tier: Mapped[str] = mapped_column(String(20), index=True, comment="street, urbanization, suburb, city")
    source_name: Mapped[str] = mapped_column(String(255), index=True)
    target_name: Mapped[str] = mapped_column(String(255))
    frequency: Mapped[int] = mapped_column(Integer, default=1)
    base_confidence: Mapped[float] = mapped_column(Float, default=0.0)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("tier", "source_name", "target_name", name="uq_location_relationship_edge"),
    )

    def __repr__(self) -> str:
        return f"<LocationRelationship({self.tier}: '{self.source_name}' -> '{self.target_name}', freq={self.frequency})>"


class DiscoveredLocation(Base):
    """Metadata about a micro-location seen in searches (aliases, common streets)."""

    __tablename__ = "discovered_locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tier: Mapped[str] = mapped_column(String(20), index=True)
    name: Mapped[str] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    aliases: Mapped[list] = mapped_column(JSON, default=list, comment="Raw spellings seen in feeds")
    common_streets: Mapped[list] = mapped_column(JSON, default=list)
    frequency: Mapped[int] = mapped_column(Integer, default=1)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("tier", "name", name="uq_discovered_location"),
    )

    def __repr__(self) -> str:
        return f"<DiscoveredLocation({self.tier}: '{self.name}', freq={self.frequency})>"
