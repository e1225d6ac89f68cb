"""Console report for an analysis output document.

Facet rows are flattened with `pandas.json_normalize` and rendered as plain
text tables. A failed facet renders its error marker instead of a table.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

import pandas as pd

from analytics_pipeline.errors import is_error_marker
from analytics_pipeline.models import FacetFailure

RULE = "=" * 72


@dataclass(frozen=True)
class Section:
    """One table of the report.

    `columns` maps flattened source columns (``"_id.market"``) to headings.
    With `record_path`, each row's nested list is unrolled first and the
    parent `_id` is kept as `parent`; `per_parent` then caps rows per parent.
    """
    title: str
    facet: str
    columns: dict[str, str]
    limit: int | None = 10
    record_path: str | None = None
    per_parent: int | None = None


MOVIE_SECTIONS = (
    Section(
        "TOP 10 GENRES BY WEIGHTED SCORE",
        "genreStatistics",
        {
            "_id": "genre",
            "totalMovies": "movies",
            "avgRating": "avg rating",
            "avgWeightedScore": "weighted score",
            "decadeCount": "decades",
            "peakDecade.decade": "peak decade",
        },
    ),
    Section(
        "DECADE TRENDS",
        "decadeTrends",
        {
            "_id": "decade",
            "totalMovies": "movies",
            "avgRating": "avg rating",
            "avgWeightedScore": "weighted score",
            "totalAwards": "awards",
        },
        limit=None,
    ),
    Section(
        "TOP PREMIUM CONTENT (HIGHEST RATED)",
        "premiumContent",
        {
            "genre": "genre",
            "decade": "decade",
            "totalMovies": "movies",
            "avgRating": "avg rating",
            "topRatedMovie": "top rating",
        },
    ),
    Section(
        "GENRE EVOLUTION BY DECADE",
        "topGenresByDecade",
        {
            "parent": "decade",
            "genre": "genre",
            "totalMovies": "movies",
            "avgWeightedScore": "weighted score",
        },
        limit=None,
        record_path="genres",
        per_parent=3,
    ),
)

LISTING_SECTIONS = (
    Section(
        "GLOBAL STATISTICS",
        "globalStats",
        {
            "totalMarkets": "markets",
            "totalListings": "listings",
            "totalHosts": "hosts",
            "totalReviews": "reviews",
            "globalAvgPrice": "avg price",
            "globalAvgRating": "avg rating",
        },
    ),
    Section(
        "TOP 10 MARKETS BY SIZE",
        "topMarkets",
        {
            "market": "market",
            "country": "country",
            "totalListings": "listings",
            "avgPrice": "avg price",
            "avgRating": "avg rating",
            "competitivenessScore": "competitiveness",
            "bookingPotential": "booking potential",
        },
    ),
    Section(
        "TOP 10 BEST VALUE MARKETS",
        "bestValueMarkets",
        {
            "market": "market",
            "country": "country",
            "avgPrice": "avg price",
            "avgRating": "avg rating",
            "valueScore": "value score",
            "totalListings": "listings",
        },
    ),
    Section(
        "PREMIUM MARKETS (RATING >= 90)",
        "premiumMarkets",
        {
            "market": "market",
            "country": "country",
            "avgPrice": "avg price",
            "avgRating": "avg rating",
            "superhostRate": "superhost %",
        },
    ),
    Section(
        "OPPORTUNITY MARKETS",
        "opportunityMarkets",
        {
            "market": "market",
            "country": "country",
            "totalListings": "listings",
            "competitivenessScore": "competitiveness",
            "bookingPotential": "booking potential",
        },
    ),
    Section(
        "TOP PROPERTY TYPE / PRICE TIER COMBINATIONS",
        "propertyAnalysis",
        {
            "_id.propertyType": "property type",
            "_id.priceTier": "price tier",
            "marketCount": "markets",
            "totalListings": "listings",
            "avgPrice": "avg price",
            "avgRating": "avg rating",
        },
    ),
)

REPORTS: dict[str, tuple[Section, ...]] = {
    "movies": MOVIE_SECTIONS,
    "airbnb": LISTING_SECTIONS,
}


def _format_float(value: float) -> str:
    return f"{value:,.2f}"


def section_frame(section: Section, rows: list[Mapping[str, Any]]) -> pd.DataFrame:
    """Flatten `rows` into the table shown for `section`."""
    if section.record_path is not None:
        frame = pd.json_normalize(
            [dict(r) for r in rows],
            record_path=section.record_path,
            meta=["_id"],
        ).rename(columns={"_id": "parent"})
        if section.per_parent is not None and not frame.empty:
            frame = frame.groupby("parent", sort=False).head(section.per_parent)
    else:
        frame = pd.json_normalize([dict(r) for r in rows])

    frame = frame.reindex(columns=list(section.columns)).rename(columns=section.columns)
    if section.limit is not None:
        frame = frame.head(section.limit)
    return frame.reset_index(drop=True)


def _render_section(section: Section, slot: Any) -> list[str]:
    lines = ["", RULE, section.title, RULE]
    if is_error_marker(slot):
        failure = FacetFailure.model_validate(slot)
        lines.append(f"facet failed ({failure.error}): {failure.message}")
        return lines
    if not slot:
        lines.append("No results found.")
        return lines
    frame = section_frame(section, slot)
    lines.append(frame.to_string(index=False, float_format=_format_float, na_rep="-"))
    return lines


def _render_summary(summary: Mapping[str, Any]) -> list[str]:
    lines = [RULE, "SUMMARY STATISTICS", RULE]
    for key, value in summary.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, list):
            value = ", ".join(map(str, value)) or "-"
        lines.append(f"{key}: {value}")
    return lines


def format_report(name: str, result: Mapping[str, Any]) -> str:
    """Render the console report of analysis `name` for `result`.

    Raises:
        KeyError: if `name` has no report layout.
    """
    sections = REPORTS[name]
    lines = _render_summary(result.get("summary", {}))
    for section in sections:
        lines += _render_section(section, result.get(section.facet, []))
    return "\n".join(lines) + "\n"
