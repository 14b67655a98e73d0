from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from marketplace_jobs.application.jobs import dispatch
from marketplace_jobs.application.services.collection_generator import CollectionGenerator
from marketplace_jobs.core.errors import NotFoundError
from marketplace_jobs.domain.types import PAYLOAD_MODELS, JobContext, JobType, queue_for

SEASONAL_AND_CURATED = ["SEASONAL", "CURATED"]


@pytest.fixture
def microsite(services):
    """A supplier with three summer water activities and one old city walk."""
    catalog = services.catalog
    supplier = catalog.create_supplier(name="Algarve Adventures")
    catalog.create_product(
        supplier_id=supplier["id"], title="Summer Boat Trip", rating=4.9, review_count=40, booking_count=120, price_from=80
    )
    catalog.create_product(
        supplier_id=supplier["id"], title="Beach Sunset Kayak", tags=["water"], rating=4.6, review_count=12,
        booking_count=30, price_from=45,
    )
    catalog.create_product(
        supplier_id=supplier["id"], title="Swim with Dolphins", description="A morning outdoor excursion", rating=4.2,
        review_count=8, price_from=150,
    )
    catalog.create_product(
        supplier_id=supplier["id"], title="Old Town Walking Tour", rating=3.8, review_count=3, booking_count=5,
        price_from=20, created_at=datetime.now(timezone.utc) - timedelta(days=90),
    )
    return catalog.create_microsite(supplier_id=supplier["id"], name="Algarve Adventures")


def test_generates_seasonal_and_curated_collections(services, microsite):
    generator = CollectionGenerator(services.catalog)
    result = generator.generate_collections_for_microsite(microsite["id"], collection_types=SEASONAL_AND_CURATED)

    assert result.created == 5
    assert result.skipped == 3
    assert result.collections == ["Summer Escapes", "Highest Rated", "Best Sellers", "New Arrivals", "Great Value"]

    collections = {c["slug"]: c for c in services.catalog.list_active_collections(microsite["id"])}
    summer = collections["summer-escapes"]
    assert summer["seasonal_months"] == [6, 7, 8]
    assert summer["products"][0]["title"] == "Summer Boat Trip"
    assert len(summer["products"]) == 3

    top = collections["highest-rated"]["products"]
    assert top[0]["featured_reason"] == "4.9 stars"
    assert "Old Town Walking Tour" not in [p["title"] for p in top]
    assert [p["title"] for p in collections["new-arrivals"]["products"]].count("Old Town Walking Tour") == 0

    assert services.catalog.get_microsite(microsite["id"], with_products=False)["collections_refreshed_at"] is not None


def test_existing_collections_are_kept_unless_forced(services, microsite):
    generator = CollectionGenerator(services.catalog)
    generator.generate_collections_for_microsite(microsite["id"], collection_types=SEASONAL_AND_CURATED)

    again = generator.generate_collections_for_microsite(microsite["id"], collection_types=SEASONAL_AND_CURATED)
    assert (again.created, again.updated, again.skipped) == (0, 0, 8)

    forced = generator.generate_collections_for_microsite(
        microsite["id"], collection_types=SEASONAL_AND_CURATED, force_regenerate=True
    )
    assert (forced.created, forced.updated) == (0, 5)
    assert len(services.catalog.list_active_collections(microsite["id"])) == 5


def test_homepage_collections_follow_the_season(services, microsite):
    generator = CollectionGenerator(services.catalog)
    generator.generate_collections_for_microsite(microsite["id"], collection_types=SEASONAL_AND_CURATED)

    january = [c["slug"] for c in generator.get_collections_for_microsite(microsite["id"], month=1)]
    assert "summer-escapes" not in january
    assert len(january) == 4

    july = generator.get_collections_for_microsite(microsite["id"], month=7)
    assert july[0]["slug"] == "summer-escapes"
    assert len(july) == 5


def test_microsite_without_products(services):
    supplier = services.catalog.create_supplier(name="Empty Supplier")
    site = services.catalog.create_microsite(supplier_id=supplier["id"], name="Empty")
    result = CollectionGenerator(services.catalog).generate_collections_for_microsite(site["id"])
    assert result.to_dict() == {"created": 0, "updated": 0, "skipped": 0, "collections": []}


def test_refresh_picks_never_refreshed_microsites_first(services, microsite):
    supplier_id = microsite["supplier_id"]
    others = [
        services.catalog.create_microsite(supplier_id=supplier_id, name="Second Site"),
        services.catalog.create_microsite(supplier_id=supplier_id, name="Third Site"),
    ]
    generator = CollectionGenerator(services.catalog)
    generator.generate_collections_for_microsite(microsite["id"], collection_types=["CURATED"])

    summary = generator.refresh_all_collections(percent_per_run=50)
    assert summary["total"] == 3
    assert summary["batch_size"] == 1
    assert summary["processed"] == 1
    assert summary["errors"] == []

    refreshed = [
        m for m in others if services.catalog.get_microsite(m["id"], with_products=False)["collections_refreshed_at"]
    ]
    assert len(refreshed) == 1


def test_refresh_without_microsites(services):
    summary = CollectionGenerator(services.catalog).refresh_all_collections()
    assert summary["processed"] == 0
    assert summary["total"] == 0


# ---------------------------------------------------------------- job handlers


def _run(services, job_type, payload):
    model = PAYLOAD_MODELS[job_type].model_validate(payload)
    ctx = JobContext(job_type=job_type, queue=queue_for(job_type), db_job_id="job-test")
    return asyncio.run(dispatch(services, job_type, model, ctx))


def test_collection_generate_job(services, microsite):
    result = _run(
        services,
        JobType.COLLECTION_GENERATE,
        {"microsite_id": microsite["id"], "collection_types": ["CURATED"], "min_products_per_collection": 3},
    )
    assert result.success is True
    assert result.data["microsite_id"] == microsite["id"]
    assert result.data["created"] == 4


def test_collection_generate_job_unknown_microsite(services):
    with pytest.raises(NotFoundError, match="Microsite not found: missing"):
        _run(services, JobType.COLLECTION_GENERATE, {"microsite_id": "missing"})


def test_collection_jobs_respect_feature_flag(services, microsite):
    services.platform.update_platform_settings(enable_collection_generation=False)

    generate = _run(services, JobType.COLLECTION_GENERATE, {"microsite_id": microsite["id"]})
    refresh = _run(services, JobType.COLLECTION_REFRESH, {})
    assert generate.error_category == "paused"
    assert refresh.error_category == "paused"
    assert services.catalog.list_active_collections(microsite["id"]) == []


def test_collection_refresh_job(services, microsite):
    result = _run(services, JobType.COLLECTION_REFRESH, {"percent_per_run": 100})
    assert result.success is True
    assert result.data["processed"] == 1
    assert result.message == "Refreshed collections for 1 of 1 microsites"
