"""Pydantic models for analysis parameters, summaries and facet failures.

Threshold models validate the knobs of the two concrete analyses; summary
models define the `summary` block attached to every output document.
"""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class MovieThresholds(BaseModel):
    """Filter thresholds and ranking sizes for the movie analysis.

    Any filter threshold set to ``None`` disables that condition.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)
    year_from: int | None = Field(1990, ge=1870, le=2100)
    year_to: int | None = Field(2020, ge=1870, le=2100)
    min_rating: float | None = Field(1, ge=0, le=10)
    min_votes: int | None = Field(100, ge=0)
    min_runtime: int | None = Field(40, ge=0)
    premium_rating: float = Field(8.0, ge=0, le=10)
    top_movies: int = Field(3, ge=1)
    top_directors: int = Field(5, ge=1)
    top_genres: int = Field(20, ge=1)
    premium_limit: int = Field(30, ge=1)

    @model_validator(mode="after")
    def _check_year_range(self) -> "MovieThresholds":
        if self.year_from is not None and self.year_to is not None and self.year_from > self.year_to:
            raise ValueError("year_from must not be after year_to")
        return self


class ListingThresholds(BaseModel):
    """Filter thresholds, price tiers and ranking sizes for the listing analysis."""
    model_config = ConfigDict(extra="forbid", frozen=True)
    min_reviews: int = Field(5, ge=0)
    budget_max: float = Field(75, gt=0)
    mid_range_max: float = Field(150, gt=0)
    premium_max: float = Field(300, gt=0)
    superhost_bonus: float = Field(1.3, ge=1)
    premium_rating: float = Field(90, ge=0, le=100)
    max_competitiveness: float = Field(2, ge=0)
    min_booking_potential: float = Field(0.1, ge=0)
    top_amenities: int = Field(10, ge=1)
    segment_amenities: int = Field(5, ge=1)
    top_markets: int = Field(20, ge=1)
    best_value_markets: int = Field(15, ge=1)
    opportunity_markets: int = Field(10, ge=1)
    property_combinations: int = Field(25, ge=1)

    @model_validator(mode="after")
    def _check_tiers(self) -> "ListingThresholds":
        if not self.budget_max < self.mid_range_max < self.premium_max:
            raise ValueError("price tiers must be strictly increasing")
        return self


class FacetFailure(BaseModel):
    """Error marker stored in a facet slot whose sub-pipeline failed."""
    model_config = ConfigDict(extra="forbid")
    error: str
    facet: str
    message: str


class _Summary(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)
    failed_facets: list[str] = Field(default_factory=list)
    timestamp: datetime


class MovieSummary(_Summary):
    """Summary block of the movie analysis output."""
    total_decades: int | None = Field(..., ge=0)
    total_genres: int | None = Field(..., ge=0)
    premium_content_count: int | None = Field(..., ge=0)


class ListingSummary(_Summary):
    """Summary block of the listing analysis output."""
    total_markets: int | None = Field(..., ge=0)
    total_listings: int | None = Field(..., ge=0)
    pipeline_stages: int = Field(..., ge=0)
    facets_analyzed: int = Field(..., ge=0)
