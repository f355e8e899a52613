"""Pydantic schemas for comparable searches and their results."""
import json
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.property_schema import PropertyRecord, TransactionType


class Classification(str, Enum):
    STANDARD = "standard"
    EDGE_CASE = "edge_case"


class MatchTier(str, Enum):
    """Tier that contributed a comparable, in precedence order."""

    STREET = "street"
    URBANIZATION = "urbanization"
    SUBURB = "suburb"
    NEARBY_URBANIZATION = "nearby_urbanization"
    CITY = "city"
    BROAD_FALLBACK = "broad_fallback"

    @property
    def rank(self) -> int:
        return list(MatchTier).index(self) + 1


class SearchOptions(BaseModel):
    limit: Optional[int] = Field(None, ge=1, le=100, description="Defaults to settings.default_result_limit")
    transaction_type: Optional[TransactionType] = Field(
        None, description="Defaults to the subject's transaction type"
    )
    classification_override: Optional[Classification] = None
    use_cache: bool = True


class SearchCriteria(BaseModel):
    """Per-request search criteria. Never persisted."""
    model_config = ConfigDict(frozen=True)

    subject_id: str
    feed_source: str
    reference: Optional[str] = None
    transaction_type: TransactionType
    property_type: str
    street: Optional[str] = None
    urbanization: Optional[str] = None
    suburb: Optional[str] = None
    city: str
    province: str
    coordinates: Optional[Tuple[float, float]] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    price: Optional[float] = None
    area: Optional[float] = None
    limit: int
    classification_override: Optional[Classification] = None

    def cache_key(self) -> str:
        """Canonical serialization: identical criteria give identical keys."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))


class ScoreBreakdown(BaseModel):
    distance_km: float
    bedroom_diff: float
    price_diff_pct: float
    size_diff_pct: float
    type_mismatch: int
    total: float = Field(ge=0)


class ComparableMatch(BaseModel):
    property: PropertyRecord
    score: float
    matched_tier: MatchTier
    distance_km: float
    breakdown: ScoreBreakdown


class ComparablesResult(BaseModel):
    subject_id: str
    results: list[ComparableMatch] = []
    tiers_used: list[MatchTier] = []
    strategy: str
    classification: Classification
    edge_case_reason: Optional[str] = None
    pass_name: Optional[str] = None
    radius_km: Optional[float] = None
    degraded: bool = False
    confidence: str = "normal"
    warnings: list[str] = []
    total_candidates: int = 0


class SearchRequest(BaseModel):
    """Body of POST /api/v1/comparables/search"""
    subject: PropertyRecord
    options: SearchOptions = SearchOptions()


class ReinforceRequest(BaseModel):
    """Body of POST /api/v1/comparables/reinforce"""
    subject: PropertyRecord
    accepted: list[PropertyRecord] = Field(..., min_length=1)
