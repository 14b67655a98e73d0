from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from marketplace_jobs.application.services.collection_generator import (
    COLLECTION_DEFINITIONS,
    MAX_PRODUCTS_PER_COLLECTION,
    best_sellers,
    great_value,
    highest_rated,
    is_in_season,
    keyword_score,
    match_by_keywords,
    match_products,
    new_arrivals,
    value_score,
)

NOW = datetime(2024, 7, 15, tzinfo=timezone.utc)


def _product(pid, title="", **kw):
    data = {
        "id": pid,
        "title": title,
        "description": "",
        "short_description": "",
        "categories": [],
        "tags": [],
        "price_from": None,
        "rating": None,
        "review_count": 0,
        "booking_count": 0,
        "created_at": NOW - timedelta(days=365),
    }
    data.update(kw)
    return data


def test_keyword_score_weights_title_matches():
    p = _product("p1", "Sunset Wine Cruise", description="A romantic evening for couples")
    # title: sunset, wine -> 3 each; elsewhere: romantic, couples -> 1 each
    assert keyword_score(p, ["sunset", "wine", "romantic", "couples", "zoo"]) == 8


def test_keyword_score_reads_tags_and_categories():
    p = _product("p1", "City Walk", categories=["Food"], tags=["tasting"])
    assert keyword_score(p, ["food", "tasting"]) == 2


def test_match_by_keywords_orders_and_drops_zero():
    products = [
        _product("a", "Museum Pass"),
        _product("b", "Kayak Trip", description="adventure"),
        _product("c", "Adventure Kayak Rafting"),
    ]
    matched = match_by_keywords(products, ["adventure", "kayak", "rafting"])
    assert [m.product["id"] for m in matched] == ["c", "b"]
    assert match_by_keywords(products, []) == []


def test_match_by_keywords_caps_results():
    products = [_product(str(i), "Wine tasting") for i in range(MAX_PRODUCTS_PER_COLLECTION + 5)]
    assert len(match_by_keywords(products, ["wine"])) == MAX_PRODUCTS_PER_COLLECTION


def test_highest_rated_requires_reviews():
    products = [
        _product("a", rating=4.9, review_count=3),
        _product("b", rating=4.5, review_count=20),
        _product("c", rating=4.8, review_count=10),
        _product("d", rating=3.9, review_count=100),
    ]
    matched = highest_rated(products)
    assert [m.product["id"] for m in matched] == ["c", "b"]
    assert matched[0].featured_reason == "4.8 stars"


def test_best_sellers():
    products = [_product("a", booking_count=0), _product("b", booking_count=5), _product("c", booking_count=50)]
    assert [m.product["id"] for m in best_sellers(products)] == ["c", "b"]


def test_new_arrivals_window():
    products = [
        _product("old", created_at=NOW - timedelta(days=40)),
        _product("new", created_at=NOW - timedelta(days=2)),
        _product("newer", created_at=NOW - timedelta(hours=1)),
    ]
    assert [m.product["id"] for m in new_arrivals(products, now=NOW)] == ["newer", "new"]


def test_value_score():
    assert value_score(5.0, 10) == pytest.approx(80.0)
    assert value_score(4.0, 100) == pytest.approx(40.0)


def test_great_value_prefers_cheap_and_good():
    products = [
        _product("cheap", rating=4.5, price_from=10),
        _product("pricey", rating=4.9, price_from=500),
        _product("poor", rating=3.0, price_from=5),
        _product("free", rating=4.8, price_from=None),
    ]
    assert [m.product["id"] for m in great_value(products)] == ["cheap", "pricey"]


def test_match_products_dispatches_on_curation_type():
    curated = {d.slug: d for d in COLLECTION_DEFINITIONS["CURATED"]}
    products = [_product("a", booking_count=3)]
    assert [m.product["id"] for m in match_products(products, curated["best-sellers"])] == ["a"]

    couples = COLLECTION_DEFINITIONS["AUDIENCE"][0]
    assert match_products([_product("b", "Honeymoon spa")], couples)[0].score == 6


def test_is_in_season():
    assert is_in_season([], 3) is True
    assert is_in_season([12, 1, 2], 1) is True
    assert is_in_season([6, 7, 8], 1) is False
