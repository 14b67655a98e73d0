"""
Curated collections for supplier microsites.

Collections are built from fixed definitions. Audience, seasonal and thematic
collections match products by keywords; curated collections rank products by
rating, bookings, recency or value. Scoring is pure and works on product dicts;
``CollectionGenerator`` persists the results through the catalog store.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from marketplace_jobs.core.errors import NotFoundError

logger = logging.getLogger(__name__)

MAX_PRODUCTS_PER_COLLECTION = 12
MAX_COLLECTIONS_SHOWN = 6
MAX_PRODUCTS_SHOWN = 8
NEW_ARRIVAL_DAYS = 30

COLLECTION_TYPES = ("AUDIENCE", "SEASONAL", "THEMATIC", "CURATED")

AUDIENCE_KEYWORDS: Dict[str, List[str]] = {
    "couples": ["romantic", "couples", "honeymoon", "date", "intimate", "wine", "sunset", "dinner", "spa", "relaxation"],
    "families": [
        "family", "kids", "children", "child-friendly", "educational", "fun", "interactive", "zoo", "aquarium",
        "theme park",
    ],
    "solo": ["solo", "individual", "personal", "photography", "walking", "hiking", "yoga", "wellness"],
    "groups": ["group", "team", "corporate", "party", "bachelor", "bachelorette", "celebration", "large group"],
}

THEMATIC_KEYWORDS: Dict[str, List[str]] = {
    "adventure": [
        "adventure", "extreme", "adrenaline", "thrill", "climbing", "rafting", "bungee", "skydiving", "zip", "kayak",
        "hiking", "trekking",
    ],
    "food": ["food", "culinary", "cooking", "wine", "beer", "tasting", "restaurant", "gastronomy", "market", "foodie"],
    "culture": [
        "culture", "history", "museum", "art", "heritage", "architecture", "traditional", "ancient", "historical",
    ],
    "nature": ["nature", "wildlife", "safari", "bird", "eco", "garden", "park", "forest", "beach", "mountain"],
    "relaxation": ["spa", "wellness", "relaxation", "massage", "yoga", "meditation", "retreat", "zen"],
}


@dataclass(frozen=True)
class CollectionDefinition:
    slug: str
    name: str
    description: str
    icon_emoji: str
    collection_type: str
    keywords: Sequence[str] = ()
    seasonal_months: Sequence[int] = ()
    target_audience: Optional[str] = None
    curation_type: Optional[str] = None  # rating | bookings | new | value


COLLECTION_DEFINITIONS: Dict[str, List[CollectionDefinition]] = {
    "AUDIENCE": [
        CollectionDefinition(
            "perfect-for-couples", "Perfect for Couples",
            "Romantic experiences designed for unforgettable moments together", "❤️", "AUDIENCE",
            keywords=AUDIENCE_KEYWORDS["couples"], target_audience="couples",
        ),
        CollectionDefinition(
            "family-adventures", "Family Adventures",
            "Fun-filled experiences the whole family will love", "👨‍👩‍👧‍👦",
            "AUDIENCE", keywords=AUDIENCE_KEYWORDS["families"], target_audience="families",
        ),
        CollectionDefinition(
            "solo-explorer", "Solo Explorer",
            "Perfect experiences for independent travelers", "🎒", "AUDIENCE",
            keywords=AUDIENCE_KEYWORDS["solo"], target_audience="solo",
        ),
        CollectionDefinition(
            "group-experiences", "Group Experiences",
            "Activities perfect for groups and celebrations", "🎉", "AUDIENCE",
            keywords=AUDIENCE_KEYWORDS["groups"], target_audience="groups",
        ),
    ],
    "SEASONAL": [
        CollectionDefinition(
            "winter-warmers", "Winter Warmers", "Cozy experiences perfect for the colder months", "❄️",
            "SEASONAL", keywords=["winter", "christmas", "holiday", "cozy", "indoor", "warm", "festive"],
            seasonal_months=(12, 1, 2),
        ),
        CollectionDefinition(
            "summer-escapes", "Summer Escapes", "Outdoor adventures and sun-soaked experiences", "☀️",
            "SEASONAL", keywords=["summer", "outdoor", "beach", "water", "sunshine", "boat", "swim"],
            seasonal_months=(6, 7, 8),
        ),
        CollectionDefinition(
            "spring-discoveries", "Spring Discoveries", "Fresh experiences as nature comes alive", "🌸",
            "SEASONAL", keywords=["spring", "flower", "garden", "blossom", "nature", "walking"],
            seasonal_months=(3, 4, 5),
        ),
        CollectionDefinition(
            "autumn-adventures", "Autumn Adventures", "Colorful experiences amid fall foliage", "🍂",
            "SEASONAL", keywords=["autumn", "fall", "harvest", "wine", "hiking", "foliage"],
            seasonal_months=(9, 10, 11),
        ),
    ],
    "THEMATIC": [
        CollectionDefinition(
            "adrenaline-rush", "Adrenaline Rush", "Heart-pumping adventures for thrill seekers", "🏔️",
            "THEMATIC", keywords=THEMATIC_KEYWORDS["adventure"],
        ),
        CollectionDefinition(
            "foodie-favorites", "Foodie Favorites", "Culinary experiences for food lovers", "🍽️",
            "THEMATIC", keywords=THEMATIC_KEYWORDS["food"],
        ),
        CollectionDefinition(
            "cultural-immersion", "Cultural Immersion", "Dive deep into local history and traditions",
            "🏛️", "THEMATIC", keywords=THEMATIC_KEYWORDS["culture"],
        ),
        CollectionDefinition(
            "nature-escapes", "Nature Escapes", "Connect with the natural world", "🌿",
            "THEMATIC", keywords=THEMATIC_KEYWORDS["nature"],
        ),
        CollectionDefinition(
            "wellness-retreat", "Wellness & Relaxation", "Rejuvenate your mind and body", "🧘",
            "THEMATIC", keywords=THEMATIC_KEYWORDS["relaxation"],
        ),
    ],
    "CURATED": [
        CollectionDefinition(
            "highest-rated", "Highest Rated", "Top-rated experiences loved by travelers", "⭐", "CURATED",
            curation_type="rating",
        ),
        CollectionDefinition(
            "best-sellers", "Best Sellers", "Our most popular experiences", "🔥", "CURATED",
            curation_type="bookings",
        ),
        CollectionDefinition(
            "new-arrivals", "New Arrivals", "Recently added experiences to discover", "✨", "CURATED",
            curation_type="new",
        ),
        CollectionDefinition(
            "great-value", "Great Value", "Amazing experiences at accessible prices", "💰", "CURATED",
            curation_type="value",
        ),
    ],
}


@dataclass
class ScoredProduct:
    product: Dict[str, Any]
    score: float
    featured_reason: Optional[str] = None


# --------------------------------------------------------------------------- scoring


def _search_text(product: Dict[str, Any]) -> str:
    parts = [
        product.get("title") or "",
        product.get("description") or "",
        product.get("short_description") or "",
        *(product.get("categories") or []),
        *(product.get("tags") or []),
    ]
    return " ".join(p for p in parts if p).lower()


def keyword_score(product: Dict[str, Any], keywords: Sequence[str]) -> int:
    """+3 per keyword found in the title, +1 per keyword found only elsewhere."""
    text = _search_text(product)
    title = (product.get("title") or "").lower()
    score = 0
    for keyword in keywords:
        kw = keyword.lower()
        if kw in text:
            score += 3 if kw in title else 1
    return score


def match_by_keywords(products: Sequence[Dict[str, Any]], keywords: Sequence[str]) -> List[ScoredProduct]:
    if not keywords:
        return []
    scored = [ScoredProduct(p, keyword_score(p, keywords)) for p in products]
    scored = [s for s in scored if s.score > 0]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:MAX_PRODUCTS_PER_COLLECTION]


def highest_rated(products: Sequence[Dict[str, Any]]) -> List[ScoredProduct]:
    eligible = [p for p in products if (p.get("rating") or 0) >= 4.0 and (p.get("review_count") or 0) >= 5]
    eligible.sort(key=lambda p: (p.get("rating") or 0, p.get("review_count") or 0), reverse=True)
    return [
        ScoredProduct(p, (p.get("rating") or 0) * 10, f"{(p.get('rating') or 0):.1f} stars")
        for p in eligible[:MAX_PRODUCTS_PER_COLLECTION]
    ]


def best_sellers(products: Sequence[Dict[str, Any]]) -> List[ScoredProduct]:
    eligible = [p for p in products if (p.get("booking_count") or 0) > 0]
    eligible.sort(key=lambda p: p.get("booking_count") or 0, reverse=True)
    return [ScoredProduct(p, p.get("booking_count") or 0, "Popular choice") for p in eligible[:MAX_PRODUCTS_PER_COLLECTION]]


def new_arrivals(products: Sequence[Dict[str, Any]], *, now: Optional[datetime] = None) -> List[ScoredProduct]:
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=NEW_ARRIVAL_DAYS)
    eligible = [p for p in products if p.get("created_at") and p["created_at"] >= cutoff]
    eligible.sort(key=lambda p: p["created_at"], reverse=True)
    return [ScoredProduct(p, 100, "New") for p in eligible[:MAX_PRODUCTS_PER_COLLECTION]]


def value_score(rating: float, price: float) -> float:
    return (rating / 5) * 100 - math.log10(price or 1) * 20


def great_value(products: Sequence[Dict[str, Any]]) -> List[ScoredProduct]:
    scored = [
        ScoredProduct(p, value_score(p["rating"], float(p["price_from"]) or 1), "Great value")
        for p in products
        if p.get("price_from") and (p.get("rating") or 0) >= 4.0
    ]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:MAX_PRODUCTS_PER_COLLECTION]


_CURATORS: Dict[str, Callable[[Sequence[Dict[str, Any]]], List[ScoredProduct]]] = {
    "rating": highest_rated,
    "bookings": best_sellers,
    "new": new_arrivals,
    "value": great_value,
}


def match_products(products: Sequence[Dict[str, Any]], definition: CollectionDefinition) -> List[ScoredProduct]:
    if definition.collection_type == "CURATED" and definition.curation_type:
        curator = _CURATORS.get(definition.curation_type)
        return curator(products) if curator else []
    return match_by_keywords(products, definition.keywords)


def is_in_season(seasonal_months: Sequence[int], month: int) -> bool:
    return not seasonal_months or month in seasonal_months


# --------------------------------------------------------------------------- persistence


@dataclass
class GenerationResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    collections: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "collections": list(self.collections),
        }


class CollectionGenerator:
    def __init__(self, catalog_store, *, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.catalog = catalog_store
        self._clock = clock

    def generate_collections_for_microsite(
        self,
        microsite_id: str,
        *,
        collection_types: Sequence[str] = COLLECTION_TYPES,
        min_products_per_collection: int = 3,
        force_regenerate: bool = False,
    ) -> GenerationResult:
        microsite = self.catalog.get_microsite(microsite_id)
        if microsite is None:
            raise NotFoundError("Microsite", microsite_id)

        result = GenerationResult()
        products = microsite.get("products") or []
        if not products:
            logger.info("No products found for microsite %s", microsite_id)
            return result

        logger.info("Processing %d products for microsite %s", len(products), microsite_id)
        sort_order = 0
        for collection_type in collection_types:
            for definition in COLLECTION_DEFINITIONS.get(collection_type, []):
                sort_order += 1
                if definition.curation_type == "new":
                    matched = new_arrivals(products, now=self._clock())
                else:
                    matched = match_products(products, definition)

                if len(matched) < min_products_per_collection:
                    logger.debug(
                        "Skipping %s: only %d products (min %d)", definition.slug, len(matched), min_products_per_collection
                    )
                    result.skipped += 1
                    continue

                if not force_regenerate and self.catalog.get_collection(microsite_id, definition.slug):
                    result.skipped += 1
                    continue

                _, created = self.catalog.save_collection(
                    microsite_id=microsite_id,
                    slug=definition.slug,
                    name=definition.name,
                    description=definition.description,
                    icon_emoji=definition.icon_emoji,
                    collection_type=definition.collection_type,
                    seasonal_months=list(definition.seasonal_months),
                    sort_order=sort_order,
                    products=[(m.product["id"], m.featured_reason) for m in matched],
                )
                if created:
                    result.created += 1
                else:
                    result.updated += 1
                result.collections.append(definition.name)
                logger.info(
                    "%s collection %s with %d products", "Created" if created else "Updated", definition.name, len(matched)
                )

        self.catalog.mark_collections_refreshed(microsite_id, self._clock())
        return result

    def refresh_all_collections(
        self,
        *,
        percent_per_run: float = 5,
        max_per_run: int = 100,
        force_regenerate: bool = False,
    ) -> Dict[str, Any]:
        """Regenerate collections for the least recently refreshed slice of microsites."""
        total = self.catalog.count_active_microsites()
        if total == 0:
            return {"processed": 0, "total": 0, "batch_size": 0, "created": 0, "updated": 0, "errors": []}

        batch = max(1, min(int(max_per_run), math.floor(total * float(percent_per_run) / 100)))
        microsites = self.catalog.list_microsites_for_refresh(batch)
        created = updated = processed = 0
        errors: List[Dict[str, str]] = []
        for microsite in microsites:
            try:
                res = self.generate_collections_for_microsite(microsite["id"], force_regenerate=force_regenerate)
            except Exception as e:
                logger.warning("Collection refresh failed for microsite %s: %s", microsite["id"], e)
                errors.append({"microsite_id": microsite["id"], "error": str(e)})
                continue
            processed += 1
            created += res.created
            updated += res.updated

        logger.info("Refreshed collections for %d/%d microsites (batch=%d)", processed, total, batch)
        return {
            "processed": processed,
            "total": total,
            "batch_size": batch,
            "created": created,
            "updated": updated,
            "errors": errors,
        }

    def get_collections_for_microsite(self, microsite_id: str, *, month: Optional[int] = None) -> List[Dict[str, Any]]:
        """Active, in-season collections as shown on a microsite homepage."""
        month = month or self._clock().month
        shown = []
        for collection in self.catalog.list_active_collections(microsite_id):
            if not is_in_season(collection.get("seasonal_months") or [], month):
                continue
            shown.append({**collection, "products": (collection.get("products") or [])[:MAX_PRODUCTS_SHOWN]})
            if len(shown) >= MAX_COLLECTIONS_SHOWN:
                break
        return shown
