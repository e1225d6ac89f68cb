from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from bson.decimal128 import Decimal128

from analytics_pipeline.analyses import get_analysis, run_pipeline
from analytics_pipeline.analyses.listings import (
    FACETS,
    build_listing_pipeline,
    listing_filter,
    listing_metrics,
)
from analytics_pipeline.engine import Pipeline, execute
from analytics_pipeline.models import ListingThresholds

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)
T = ListingThresholds()

SUB_SCORES = {
    f"review_scores_{name}": 10
    for name in ("accuracy", "cleanliness", "checkin", "communication", "location", "value")
}


def listing(host_id: int, price: str, /, **extra: Any) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "name": f"listing {host_id}",
        "price": Decimal128(price),
        "number_of_reviews": 10,
        "bedrooms": 1,
        "beds": 2,
        "bathrooms": Decimal128("1.0"),
        "accommodates": 2,
        "property_type": "Apartment",
        "room_type": "Entire home/apt",
        "address": {"market": "Porto", "country": "Portugal"},
        "review_scores": {"review_scores_rating": 95, **SUB_SCORES},
        "host": {
            "host_id": host_id,
            "host_is_superhost": True,
            "host_identity_verified": True,
            "host_total_listings_count": 1,
        },
        "availability": {
            "availability_30": 15,
            "availability_60": 30,
            "availability_90": 45,
            "availability_365": 180,
        },
        "amenities": ["Wifi"],
    }
    doc.update(extra)
    return doc


LISTINGS = [listing(1, "50.00"), listing(2, "100.00"), listing(3, "400.00")]


def test_price_tiers() -> None:
    out = execute(Pipeline.of(listing_filter(T), listing_metrics(T)), LISTINGS)
    assert [d["priceTier"] for d in out] == ["Budget", "Mid-Range", "Luxury"]
    assert [d["priceNumeric"] for d in out] == [50.0, 100.0, 400.0]


def test_listing_metrics() -> None:
    doc = execute(Pipeline.of(listing_metrics(T)), [listing(1, "100.00", cleaning_fee=Decimal128("20"))])[0]
    assert doc["pricePerBed"] == 50
    assert doc["pricePerPerson"] == 50
    assert doc["totalBaseCost"] == 120
    assert doc["propertyScore"] == 1 * 30 + 2 * 15 + 1 * 20 + 2 * 10
    assert doc["reviewQuality"] == 10
    assert doc["isSuperhostVerified"] is True
    assert doc["amenityCount"] == 1
    assert doc["avgAvailability"] == 15
    assert doc["valueScore"] == pytest.approx(10 / (10 + 1) * 100)
    assert doc["bookingPotential"] == pytest.approx(15 / 30 * 10 / 100 * 1.3 * 20 / 100)


def test_filter_drops_listings_with_few_reviews_or_no_price() -> None:
    docs = [*LISTINGS, listing(4, "60.00", number_of_reviews=2), listing(5, "60.00", price=None)]
    assert len(execute(Pipeline.of(listing_filter(T)), docs)) == 3


def test_market_rollup_of_three_listings() -> None:
    result = run_pipeline(get_analysis("airbnb"), LISTINGS, clock=lambda: NOW)
    assert list(result) == [*FACETS, "summary"]

    market = result["topMarkets"][0]
    assert market["market"] == "Porto"
    assert market["_id"] == {"market": "Porto", "country": "Portugal"}
    assert market["totalListings"] == 3
    assert market["avgPrice"] == pytest.approx(183.333333, rel=1e-6)
    assert market["totalHosts"] == 3
    assert market["propertyTypesOffered"] == 3

    stats = result["globalStats"][0]
    assert stats["totalMarkets"] == 1
    assert stats["totalListings"] == 3

    assert result["premiumMarkets"][0]["avgRating"] == 95
    assert {row["_id"]["priceTier"] for row in result["propertyAnalysis"]} == {
        "Budget",
        "Mid-Range",
        "Luxury",
    }

    assert result["summary"] == {
        "failedFacets": [],
        "timestamp": NOW,
        "totalMarkets": 1,
        "totalListings": 3,
        "pipelineStages": 8,
        "facetsAnalyzed": 6,
    }


def test_listings_without_amenities_still_count_once() -> None:
    docs = [listing(1, "50.00", amenities=[]), listing(2, "60.00")]
    del docs[1]["amenities"]
    result = run_pipeline(get_analysis("airbnb"), docs, clock=lambda: NOW)
    assert result["globalStats"][0]["totalListings"] == 2


def test_amenity_expansion_weights_segments_by_amenity_count() -> None:
    docs = [listing(1, "50.00", amenities=["Wifi", "TV", "Kitchen"])]
    result = run_pipeline(get_analysis("airbnb"), docs, clock=lambda: NOW)
    assert result["globalStats"][0]["totalListings"] == 3
    assert result["topMarkets"][0]["totalHosts"] == 1


def test_custom_thresholds_change_tiers() -> None:
    wide = ListingThresholds(budget_max=100, mid_range_max=200, premium_max=500)
    out = execute(Pipeline.of(listing_metrics(wide)), LISTINGS)
    assert [d["priceTier"] for d in out] == ["Budget", "Budget", "Premium"]
    assert len(build_listing_pipeline(wide)) == 8
