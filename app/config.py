"""Application settings loaded from environment variables.

Search thresholds, scoring weights, relaxation levels and the area tolerance
table are all configuration: they are observed constants without a formal
derivation and are expected to be recalibrated against real data.
"""
from typing import Dict, List
from pathlib import Path
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Caminho absoluto para o ficheiro .env
ENV_FILE = Path(__file__).parent.parent / ".env"


class ScoringWeights(BaseModel):
    """Weights of the composite similarity cost. Must sum to 1."""

    distance: float = Field(0.30, ge=0)
    price: float = Field(0.30, ge=0)
    size: float = Field(0.20, ge=0)
    bedrooms: float = Field(0.15, ge=0)
    type: float = Field(0.05, ge=0)

    @model_validator(mode="after")
    def check_sum(self) -> "ScoringWeights":
        total = self.distance + self.price + self.size + self.bedrooms + self.type
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 1, got {total:.4f}")
        return self


class RelaxationLevel(BaseModel):
    """One step of progressive relaxation for edge-case subjects."""

    name: str
    bedroom_tolerance: int = Field(ge=0)
    price_tolerance: float = Field(ge=0)
    size_tolerance: float = Field(ge=0)
    radius_km: float = Field(gt=0)
    allow_related_types: bool = False


class AreaToleranceRule(BaseModel):
    """Row of the area tolerance table.

    Matches when the category is in ``categories`` (empty = any category) and
    the subject area is below ``max_area`` (None = no ceiling). The window is
    ``[area * lower, area * upper]``.
    """

    categories: List[str] = []
    max_area: float | None = None
    lower: float = Field(ge=0)
    upper: float = Field(gt=0)


DEFAULT_RELAXATION_LEVELS = [
    RelaxationLevel(name="strict_luxury_match", bedroom_tolerance=1, price_tolerance=0.2, size_tolerance=0.2, radius_km=10),
    RelaxationLevel(name="flexible_luxury", bedroom_tolerance=2, price_tolerance=0.4, size_tolerance=0.4, radius_km=20),
    RelaxationLevel(name="similar_property_types", bedroom_tolerance=3, price_tolerance=0.6, size_tolerance=0.5, radius_km=30, allow_related_types=True),
    RelaxationLevel(name="broad_area_search", bedroom_tolerance=4, price_tolerance=0.8, size_tolerance=0.7, radius_km=50, allow_related_types=True),
]

DEFAULT_AREA_TOLERANCE_RULES = [
    # Compact villas sit far below the villa median, compare them against the lower end of the market
    AreaToleranceRule(categories=["villa", "country-house"], max_area=100, lower=0.5, upper=6.0),
    AreaToleranceRule(categories=["villa", "country-house"], max_area=150, lower=0.5, upper=3.0),
    AreaToleranceRule(categories=["villa", "country-house"], lower=0.6, upper=1.4),
    AreaToleranceRule(categories=["penthouse"], max_area=80, lower=0.6, upper=2.0),
    AreaToleranceRule(categories=["plot"], lower=0.5, upper=1.5),
    AreaToleranceRule(lower=0.7, upper=1.3),
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "CMA-Comparables"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:8000"]
    api_key: str = ""

    # Database
    database_url: str = "sqlite+aiosqlite:///./comparables.db"

    # Candidate selection
    default_result_limit: int = Field(12, ge=1, le=100)
    candidate_cap: int = Field(200, ge=1)
    radius_steps_km: List[float] = [3.0, 5.0, 10.0, 15.0]
    geocode_min_confidence: float = Field(0.5, ge=0.0, le=1.0)

    # Scoring
    scoring_weights: ScoringWeights = ScoringWeights()
    missing_coordinates_penalty_km: float = 50.0
    exact_location_distance_km: float = 0.1
    same_suburb_distance_km: float = 0.5
    default_bedroom_tolerance: int = 2
    broad_fallback_bedroom_tolerance: int = 4
    broad_fallback_price_tolerance: float = 0.8
    broad_fallback_size_tolerance: float = 0.7

    # Edge-case classification
    edge_case_max_bedrooms: int = 6
    luxury_price_thresholds: Dict[str, float] = {
        "sale": 2_000_000,
        "long_term_rental": 15_000,
        "short_term_rental": 20_000,
    }
    edge_case_max_build_area: float = 500.0
    luxury_categories: List[str] = ["villa", "country-house", "penthouse"]
    luxury_category_min_area: float = 400.0

    relaxation_levels: List[RelaxationLevel] = DEFAULT_RELAXATION_LEVELS

    # Tolerance windows
    area_tolerance_rules: List[AreaToleranceRule] = DEFAULT_AREA_TOLERANCE_RULES
    default_area_lower: float = Field(0.7, ge=0)
    default_area_upper: float = Field(1.3, gt=0)
    price_window_tolerances: Dict[str, float] = {
        "sale": 0.5,
        "long_term_rental": 0.4,
        "short_term_rental": 0.6,
    }
    high_value_sale_price: float = 1_000_000
    high_value_sale_lower: float = Field(0.2, ge=0)
    high_value_sale_upper: float = Field(1.8, gt=0)
    related_categories: Dict[str, List[str]] = {
        "villa": ["country-house", "penthouse"],
        "country-house": ["villa"],
        "penthouse": ["villa", "apartment"],
        "apartment": ["penthouse"],
        "townhouse": ["villa"],
    }

    # Learning engine
    nearby_confidence_floor: float = Field(0.3, ge=0.0, le=1.0)
    relationship_half_life_days: float = Field(30.0, gt=0)
    relationship_saturation_frequency: int = Field(5, ge=1)
    max_relationships: int = Field(1000, ge=1)
    max_discovered_locations: int = Field(500, ge=1)

    # Result cache. Keys carry the index and store versions but not the clock,
    # so the TTL bounds how long a decayed relationship keeps serving.
    result_cache_ttl_seconds: int = 1800
    result_cache_max_entries: int = 256

    # Geocoding backfill (throttled independently of searches)
    geocode_min_delay: float = 1.0
    geocode_max_delay: float = 2.0

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if not v.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("database_url must use async driver")
        return v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            import json
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        if not v:
            import warnings
            warnings.warn(
                "API_KEY não configurada — endpoints desprotegidos.",
                stacklevel=2,
            )
        return v

    @field_validator("radius_steps_km")
    @classmethod
    def validate_radius_steps(cls, v: List[float]) -> List[float]:
        if not v:
            raise ValueError("radius_steps_km must not be empty")
        if any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("radius_steps_km must be strictly increasing")
        return v

    @field_validator("relaxation_levels")
    @classmethod
    def validate_relaxation_levels(cls, v: List[RelaxationLevel]) -> List[RelaxationLevel]:
        if not v:
            raise ValueError("relaxation_levels must not be empty")
        return v

    @model_validator(mode="after")
    def check_cache_ttl(self) -> "Settings":
        # Relationship confidence must barely move within one cache lifetime
        if self.result_cache_ttl_seconds * 100 > self.relationship_half_life_days * 86400:
            raise ValueError(
                "result_cache_ttl_seconds must stay below 1% of relationship_half_life_days"
            )
        return self


settings = Settings()
