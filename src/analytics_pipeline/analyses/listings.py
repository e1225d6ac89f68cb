"""Market analytics over `sample_airbnb.listingsAndReviews`.

Listings are scored (price tier, review quality, value score, booking
potential), expanded per amenity, grouped into market segments
(market, country, property type, room type, price tier) and then into
markets (market, country). Six facets summarise the markets.

Note that amenity expansion happens before the segment grouping, so
per-segment counts and averages weight each listing by its number of amenities
(listings without amenities count once).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from analytics_pipeline.engine import expressions as ex
from analytics_pipeline.engine import filters as fl
from analytics_pipeline.engine import grouping as acc
from analytics_pipeline.engine.stages import (
    Derive,
    Expand,
    Facet,
    Filter,
    Group,
    Pipeline,
    Project,
    Sort,
    TopN,
)
from analytics_pipeline.errors import is_error_marker
from analytics_pipeline.models import ListingSummary, ListingThresholds

FACETS = (
    "topMarkets",
    "bestValueMarkets",
    "premiumMarkets",
    "opportunityMarkets",
    "propertyAnalysis",
    "globalStats",
)

PRICE = ex.to_number(ex.field("price"))
REVIEW_SUB_SCORES = (
    "review_scores.review_scores_accuracy",
    "review_scores.review_scores_cleanliness",
    "review_scores.review_scores_checkin",
    "review_scores.review_scores_communication",
    "review_scores.review_scores_location",
    "review_scores.review_scores_value",
)


def _zero_if_null(path: str) -> ex.Expression:
    return ex.if_null(ex.field(path), 0)


def _per_unit(path: str) -> ex.Expression:
    """Price divided by a positive count at `path`, else the plain price."""
    return ex.cond(ex.gt(ex.field(path), 0), ex.divide(PRICE, ex.field(path)), PRICE)


def listing_filter(t: ListingThresholds) -> Filter:
    return Filter(
        predicate=fl.where(
            fl.gte("number_of_reviews", t.min_reviews),
            fl.exists("price"),
            fl.ne("price", None),
            fl.exists("bedrooms"),
            fl.gte("bedrooms", 0),
            fl.exists("address.market"),
            fl.exists("address.country"),
            fl.exists("review_scores.review_scores_rating"),
        )
    )


def price_tier(t: ListingThresholds) -> ex.Expression:
    return ex.switch(
        [
            (ex.lte(PRICE, t.budget_max), "Budget"),
            (ex.lte(PRICE, t.mid_range_max), "Mid-Range"),
            (ex.lte(PRICE, t.premium_max), "Premium"),
            (ex.gt(PRICE, t.premium_max), "Luxury"),
        ],
        default="Unknown",
    )


def listing_metrics(t: ListingThresholds) -> Derive:
    """Per-listing derived fields. Later fields build on earlier ones."""
    quality = ex.field("reviewQuality")
    return Derive(
        fields={
            "priceNumeric": PRICE,
            "cleaningFeeNumeric": ex.to_number(_zero_if_null("cleaning_fee")),
            "extraPeopleNumeric": ex.to_number(_zero_if_null("extra_people")),
            "securityDepositNumeric": ex.to_number(_zero_if_null("security_deposit")),
            "pricePerBed": _per_unit("beds"),
            "pricePerPerson": _per_unit("accommodates"),
            "totalBaseCost": ex.add(ex.field("priceNumeric"), ex.field("cleaningFeeNumeric")),
            "propertyScore": ex.add(
                ex.multiply(_zero_if_null("bedrooms"), 30),
                ex.multiply(_zero_if_null("beds"), 15),
                ex.multiply(ex.to_number(_zero_if_null("bathrooms")), 20),
                ex.multiply(ex.field("accommodates"), 10),
            ),
            "reviewQuality": ex.avg(*(_zero_if_null(p) for p in REVIEW_SUB_SCORES)),
            "isSuperhostVerified": ex.and_(
                ex.eq(ex.if_null(ex.field("host.host_is_superhost"), False), True),
                ex.eq(ex.if_null(ex.field("host.host_identity_verified"), False), True),
            ),
            "amenityCount": ex.size(ex.if_null(ex.field("amenities"), [])),
            "avgAvailability": ex.avg(
                _zero_if_null("availability.availability_30"),
                ex.divide(_zero_if_null("availability.availability_60"), 2),
                ex.divide(_zero_if_null("availability.availability_90"), 3),
                ex.divide(_zero_if_null("availability.availability_365"), 12),
            ),
            "priceTier": price_tier(t),
            "valueScore": ex.multiply(
                ex.divide(quality, ex.add(ex.sqrt(ex.field("priceNumeric")), 1)),
                100,
            ),
            "bookingPotential": ex.multiply(
                ex.divide(ex.field("avgAvailability"), 30),
                ex.divide(quality, 100),
                ex.cond(ex.field("isSuperhostVerified"), t.superhost_bonus, 1),
                ex.divide(ex.add(ex.field("number_of_reviews"), 10), 100),
            ),
        }
    )


def segment_rollup(t: ListingThresholds) -> Group:
    """One row per (market, country, property type, room type, price tier)."""
    return Group(
        key={
            "market": ex.field("address.market"),
            "country": ex.field("address.country"),
            "propertyType": ex.field("property_type"),
            "roomType": ex.field("room_type"),
            "priceTier": ex.field("priceTier"),
        },
        accumulators={
            "listingCount": acc.Count(),
            "uniqueHosts": acc.AddToSet(ex.field("host.host_id")),
            "avgPrice": acc.Avg(ex.field("priceNumeric")),
            "minPrice": acc.Min(ex.field("priceNumeric")),
            "maxPrice": acc.Max(ex.field("priceNumeric")),
            "medianPrice": acc.Median(ex.field("priceNumeric")),
            "avgPricePerBed": acc.Avg(ex.field("pricePerBed")),
            "avgPricePerPerson": acc.Avg(ex.field("pricePerPerson")),
            "avgTotalCost": acc.Avg(ex.field("totalBaseCost")),
            "avgBedrooms": acc.Avg(ex.field("bedrooms")),
            "avgBeds": acc.Avg(ex.field("beds")),
            "avgAccommodates": acc.Avg(ex.field("accommodates")),
            "avgPropertyScore": acc.Avg(ex.field("propertyScore")),
            "avgReviewRating": acc.Avg(ex.field("review_scores.review_scores_rating")),
            "avgReviewQuality": acc.Avg(ex.field("reviewQuality")),
            "avgReviewCount": acc.Avg(ex.field("number_of_reviews")),
            "totalReviews": acc.Sum(ex.field("number_of_reviews")),
            "superhostCount": acc.Sum(ex.cond(ex.field("isSuperhostVerified"), 1, 0)),
            "avgHostListings": acc.Avg(ex.field("host.host_total_listings_count")),
            "topAmenities": acc.TopFrequent(ex.field("amenities"), n=t.top_amenities),
            "avgAmenityCount": acc.Avg(ex.field("amenityCount")),
            "avgAvailability": acc.Avg(ex.field("avgAvailability")),
            "avgValueScore": acc.Avg(ex.field("valueScore")),
            "avgBookingPotential": acc.Avg(ex.field("bookingPotential")),
            "avgCleaningFee": acc.Avg(ex.field("cleaningFeeNumeric")),
            "avgSecurityDeposit": acc.Avg(ex.field("securityDepositNumeric")),
        },
    )


def segment_metrics() -> Derive:
    return Derive(
        fields={
            "uniqueHostCount": ex.size(ex.field("uniqueHosts")),
            "superhostPercentage": ex.multiply(
                ex.divide(ex.field("superhostCount"), ex.field("listingCount")), 100
            ),
        }
    )


def market_rollup(t: ListingThresholds) -> Group:
    """One row per (market, country) with its segments by booking potential."""
    return Group(
        key={"market": ex.field("_id.market"), "country": ex.field("_id.country")},
        accumulators={
            "totalListings": acc.Sum(ex.field("listingCount")),
            "totalHosts": acc.Sum(ex.field("uniqueHostCount")),
            "totalReviews": acc.Sum(ex.field("totalReviews")),
            "marketAvgPrice": acc.Avg(ex.field("avgPrice")),
            "marketMinPrice": acc.Min(ex.field("minPrice")),
            "marketMaxPrice": acc.Max(ex.field("maxPrice")),
            "priceVariance": acc.StdDevPop(ex.field("avgPrice")),
            "propertyTypesOffered": acc.Count(),
            "avgMarketQuality": acc.Avg(ex.field("avgReviewQuality")),
            "avgMarketRating": acc.Avg(ex.field("avgReviewRating")),
            "propertySegments": acc.Push(
                ex.obj(
                    propertyType=ex.field("_id.propertyType"),
                    roomType=ex.field("_id.roomType"),
                    priceTier=ex.field("_id.priceTier"),
                    count=ex.field("listingCount"),
                    avgPrice=ex.field("avgPrice"),
                    avgRating=ex.field("avgReviewRating"),
                    avgValueScore=ex.field("avgValueScore"),
                    avgBookingPotential=ex.field("avgBookingPotential"),
                    superhostPct=ex.field("superhostPercentage"),
                    topAmenities=ex.slice_(ex.field("topAmenities"), t.segment_amenities),
                ),
                sort_by=(("avgBookingPotential", -1),),
            ),
            "avgSuperhostRate": acc.Avg(ex.field("superhostPercentage")),
            "avgAvailability": acc.Avg(ex.field("avgAvailability")),
            "marketValueScore": acc.Avg(ex.field("avgValueScore")),
            "marketBookingPotential": acc.Avg(ex.field("avgBookingPotential")),
        },
    )


def market_metrics() -> Derive:
    quality = ex.field("avgMarketQuality")
    return Derive(
        fields={
            "competitivenessScore": ex.multiply(
                ex.divide(ex.field("totalListings"), ex.add(ex.field("totalHosts"), 1)),
                ex.divide(quality, 10),
            ),
            "marketPQRatio": ex.divide(
                quality, ex.add(ex.sqrt(ex.field("marketAvgPrice")), 1)
            ),
        }
    )


MARKET = ex.field("_id.market")
COUNTRY = ex.field("_id.country")


def market_facets(t: ListingThresholds) -> Facet:
    top_markets = Pipeline.of(
        Project(
            fields={
                "market": MARKET,
                "country": COUNTRY,
                "totalListings": True,
                "totalHosts": True,
                "totalReviews": True,
                "avgPrice": ex.field("marketAvgPrice"),
                "avgRating": ex.field("avgMarketRating"),
                "competitivenessScore": True,
                "valueScore": ex.field("marketValueScore"),
                "bookingPotential": ex.field("marketBookingPotential"),
                "superhostRate": ex.field("avgSuperhostRate"),
                "propertyTypesOffered": True,
            }
        ),
        TopN(n=t.top_markets, sort_by=(("totalListings", -1),)),
    )

    best_value = Pipeline.of(
        Project(
            fields={
                "market": MARKET,
                "country": COUNTRY,
                "avgPrice": ex.field("marketAvgPrice"),
                "avgRating": ex.field("avgMarketRating"),
                "valueScore": ex.field("marketValueScore"),
                "pqRatio": ex.field("marketPQRatio"),
                "totalListings": True,
            }
        ),
        TopN(n=t.best_value_markets, sort_by=(("valueScore", -1),)),
    )

    premium = Pipeline.of(
        Filter(predicate=fl.where(fl.gte("avgMarketRating", t.premium_rating))),
        Project(
            fields={
                "market": MARKET,
                "country": COUNTRY,
                "avgPrice": ex.field("marketAvgPrice"),
                "avgRating": ex.field("avgMarketRating"),
                "superhostRate": ex.field("avgSuperhostRate"),
                "totalListings": True,
                "competitivenessScore": True,
            }
        ),
        Sort(keys=(("avgRating", -1),)),
    )

    opportunities = Pipeline.of(
        Filter(
            predicate=fl.where(
                fl.lte("competitivenessScore", t.max_competitiveness),
                fl.gte("marketBookingPotential", t.min_booking_potential),
            )
        ),
        Project(
            fields={
                "market": MARKET,
                "country": COUNTRY,
                "totalListings": True,
                "avgPrice": ex.field("marketAvgPrice"),
                "competitivenessScore": True,
                "bookingPotential": ex.field("marketBookingPotential"),
                "propertyTypesOffered": True,
            }
        ),
        TopN(n=t.opportunity_markets, sort_by=(("bookingPotential", -1),)),
    )

    segment = "propertySegments."
    property_analysis = Pipeline.of(
        Expand(path="propertySegments"),
        Group(
            key={
                "propertyType": ex.field(segment + "propertyType"),
                "priceTier": ex.field(segment + "priceTier"),
            },
            accumulators={
                "marketCount": acc.Count(),
                "totalListings": acc.Sum(ex.field(segment + "count")),
                "avgPrice": acc.Avg(ex.field(segment + "avgPrice")),
                "avgRating": acc.Avg(ex.field(segment + "avgRating")),
                "avgValueScore": acc.Avg(ex.field(segment + "avgValueScore")),
                "avgBookingPotential": acc.Avg(ex.field(segment + "avgBookingPotential")),
                "avgSuperhostRate": acc.Avg(ex.field(segment + "superhostPct")),
            },
        ),
        TopN(n=t.property_combinations, sort_by=(("totalListings", -1),)),
    )

    global_stats = Pipeline.of(
        Group(
            key=None,
            accumulators={
                "totalMarkets": acc.Count(),
                "totalListings": acc.Sum(ex.field("totalListings")),
                "totalHosts": acc.Sum(ex.field("totalHosts")),
                "totalReviews": acc.Sum(ex.field("totalReviews")),
                "globalAvgPrice": acc.Avg(ex.field("marketAvgPrice")),
                "globalAvgRating": acc.Avg(ex.field("avgMarketRating")),
                "avgListingsPerMarket": acc.Avg(ex.field("totalListings")),
                "avgHostsPerMarket": acc.Avg(ex.field("totalHosts")),
            },
        ),
    )

    return Facet(
        facets={
            "topMarkets": top_markets,
            "bestValueMarkets": best_value,
            "premiumMarkets": premium,
            "opportunityMarkets": opportunities,
            "propertyAnalysis": property_analysis,
            "globalStats": global_stats,
        }
    )


def build_listing_pipeline(thresholds: ListingThresholds | None = None) -> Pipeline:
    """Assemble the complete listing/market analytics pipeline."""
    t = thresholds or ListingThresholds()
    return Pipeline.of(
        listing_filter(t),
        listing_metrics(t),
        Expand(path="amenities", preserve_empty=True),
        segment_rollup(t),
        segment_metrics(),
        market_rollup(t),
        market_metrics(),
        market_facets(t),
    )


def summarize_listings(facets: dict[str, Any], timestamp: datetime, stages: int) -> dict[str, Any]:
    """Return the `summary` block for a listing facet result."""
    stats = facets.get("globalStats", [])
    totals = stats[0] if isinstance(stats, list) and stats else {}
    failed = [name for name, slot in facets.items() if is_error_marker(slot)]
    summary = ListingSummary(
        total_markets=None if "globalStats" in failed else totals.get("totalMarkets", 0),
        total_listings=None if "globalStats" in failed else totals.get("totalListings", 0),
        pipeline_stages=stages,
        facets_analyzed=len(facets) - len(failed),
        failed_facets=failed,
        timestamp=timestamp,
    )
    return summary.model_dump(by_alias=True)
