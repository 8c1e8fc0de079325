from datetime import datetime, timedelta, timezone

from bazaar.services.verification import (
    FACTOR_ADDRESS,
    FACTOR_COMPREHENSIVE_PHOTOS,
    FACTOR_CONTACT_PHONE,
    FACTOR_DETAILED_DESCRIPTION,
    FACTOR_FARMER_PHONE_VERIFIED,
    FACTOR_GEOLOCATION,
    FACTOR_MULTIPLE_IMAGES,
    FACTOR_ORDER,
    FACTOR_PRIMARY_IMAGE,
    FACTOR_VARIETY,
    MAX_SCORE,
    rank_listings,
    score_listing,
)


def _complete_listing() -> dict:
    return {
        "id": "listing-1",
        "primary_image_url": "https://img.example/front.jpg",
        "image_urls": ["https://img.example/side.jpg", "https://img.example/field.jpg"],
        "location": {"latitude": 18.52, "longitude": 73.85, "district": "Pune"},
        "contact_phone": "+91-9800000000",
        "description": "x" * 60,
        "variety_name": "Sharbati",
    }


def test_documented_scenario_scores_95_in_fixed_factor_order() -> None:
    assessment = score_listing(_complete_listing())

    assert assessment.score == 95
    assert assessment.factors == (
        FACTOR_PRIMARY_IMAGE,
        FACTOR_MULTIPLE_IMAGES,
        FACTOR_COMPREHENSIVE_PHOTOS,
        FACTOR_GEOLOCATION,
        FACTOR_CONTACT_PHONE,
        FACTOR_DETAILED_DESCRIPTION,
        FACTOR_VARIETY,
    )
    assert list(assessment.factors) == [label for label in FACTOR_ORDER if label in assessment.factors]


def test_verified_farmer_phone_reaches_cap() -> None:
    listing = {**_complete_listing(), "farmer_phone_verified": True}

    assessment = score_listing(listing)

    assert assessment.score == MAX_SCORE
    assert FACTOR_FARMER_PHONE_VERIFIED in assessment.factors


def test_empty_listing_scores_zero() -> None:
    assessment = score_listing({})

    assert assessment.score == 0
    assert assessment.factors == ()


def test_scoring_is_pure() -> None:
    listing = _complete_listing()
    snapshot = {**listing, "location": dict(listing["location"]), "image_urls": list(listing["image_urls"])}

    first = score_listing(listing)
    second = score_listing(listing)

    assert first == second
    assert listing == snapshot


def test_adding_a_satisfied_field_never_lowers_the_score() -> None:
    base = {"primary_image_url": "https://img.example/a.jpg", "location": {}}
    additions = [
        {"contact_phone": "98000"},
        {"variety_name": "Basmati"},
        {"description": "d" * 51},
        {"location": {"village": "Khed"}},
        {"location": {"latitude": 1.0, "longitude": 2.0}},
        {"image_urls": ["https://img.example/b.jpg"]},
        {"farmer_phone_verified": True},
    ]
    baseline = score_listing(base).score
    for extra in additions:
        assert score_listing({**base, **extra}).score >= baseline


def test_address_without_coordinates_scores_fifteen() -> None:
    assessment = score_listing({"location": {"address": "Near market yard, Nashik"}})
    assert assessment.score == 15
    assert assessment.factors == (FACTOR_ADDRESS,)


def test_unknown_address_and_boolean_coordinates_score_nothing() -> None:
    assert score_listing({"location": {"address": "Unknown"}}).score == 0
    assert score_listing({"location": {"latitude": True, "longitude": False}}).score == 0


def test_short_description_does_not_count() -> None:
    assert score_listing({"description": "y" * 50}).score == 0


def test_duplicate_primary_image_counts_once() -> None:
    listing = {"primary_image_url": "https://img.example/a.jpg", "image_urls": ["https://img.example/a.jpg"]}
    assessment = score_listing(listing)
    assert assessment.factors == (FACTOR_PRIMARY_IMAGE,)


def test_rank_listings_orders_by_score_then_earlier_factor_then_recency() -> None:
    now = datetime.now(timezone.utc)
    phone_only = {"id": "a", "contact_phone": "1", "created_at": now}
    address_only = {"id": "b", "location": {"address": "Karad"}, "created_at": now - timedelta(days=1)}
    newer_phone = {"id": "c", "contact_phone": "2", "created_at": now + timedelta(minutes=1)}
    top = {**_complete_listing(), "id": "d", "created_at": now - timedelta(days=3)}

    ranked = rank_listings([phone_only, address_only, newer_phone, top])

    # Address (15) outranks phone (15) because geolocation/address precede contact phone.
    assert [listing["id"] for listing in ranked] == ["d", "b", "c", "a"]
