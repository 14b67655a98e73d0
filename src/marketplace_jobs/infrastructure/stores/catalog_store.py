from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.orm import selectinload

from marketplace_jobs.infrastructure.stores.base import SqlAlchemyStore
from marketplace_jobs.infrastructure.stores.models import (
    CuratedCollectionModel,
    MicrositeModel,
    ProductCollectionModel,
    ProductModel,
    SupplierModel,
)
from marketplace_jobs.infrastructure.stores.sqlalchemy_db import as_utc, iso, utcnow


class SqlAlchemyCatalogStore(SqlAlchemyStore):
    """Suppliers, their products and microsites, plus curated collections."""

    # ---------------------------------------------------------------- catalog

    def create_supplier(self, *, name: str) -> Dict[str, Any]:
        with self._provider.session() as session:
            row = SupplierModel(name=name, created_at=utcnow())
            session.add(row)
            session.commit()
            return {"id": row.id, "name": row.name}

    def create_product(
        self,
        *,
        supplier_id: str,
        title: str,
        description: str = "",
        short_description: str = "",
        categories: Sequence[str] = (),
        tags: Sequence[str] = (),
        price_from: Optional[float] = None,
        rating: Optional[float] = None,
        review_count: int = 0,
        booking_count: int = 0,
        created_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        with self._provider.session() as session:
            row = ProductModel(
                supplier_id=supplier_id,
                title=title,
                description=description,
                short_description=short_description,
                price_from=price_from,
                rating=rating,
                review_count=int(review_count),
                booking_count=int(booking_count),
                created_at=created_at or utcnow(),
            )
            row.set_categories(list(categories))
            row.set_tags(list(tags))
            session.add(row)
            session.commit()
            return self._product_to_dict(row)

    def create_microsite(
        self,
        *,
        supplier_id: str,
        name: str,
        slug: str = "",
        site_id: Optional[str] = None,
        status: str = "ACTIVE",
    ) -> Dict[str, Any]:
        with self._provider.session() as session:
            row = MicrositeModel(
                supplier_id=supplier_id,
                name=name,
                slug=slug or name.lower().replace(" ", "-"),
                site_id=site_id,
                status=status,
                created_at=utcnow(),
            )
            session.add(row)
            session.commit()
            return self._microsite_to_dict(row)

    def get_microsite(self, microsite_id: str, *, with_products: bool = True) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.get(MicrositeModel, microsite_id)
            if row is None:
                return None
            data = self._microsite_to_dict(row)
            if with_products:
                products = session.execute(
                    select(ProductModel).where(ProductModel.supplier_id == row.supplier_id)
                ).scalars().all()
                data["products"] = [self._product_to_dict(p) for p in products]
            return data

    def count_active_microsites(self) -> int:
        with self._provider.session() as session:
            stmt = select(func.count(MicrositeModel.id)).where(MicrositeModel.status == "ACTIVE")
            return int(session.execute(stmt).scalar_one() or 0)

    def list_microsites_for_refresh(self, limit: int) -> List[Dict[str, Any]]:
        """Active microsites, never-refreshed first, then least recently refreshed."""
        with self._provider.session() as session:
            rows = session.execute(
                select(MicrositeModel)
                .where(MicrositeModel.status == "ACTIVE")
                .order_by(
                    MicrositeModel.collections_refreshed_at.is_(None).desc(),
                    MicrositeModel.collections_refreshed_at.asc(),
                    MicrositeModel.created_at.asc(),
                )
                .limit(int(limit))
            ).scalars().all()
            return [self._microsite_to_dict(r) for r in rows]

    def mark_collections_refreshed(self, microsite_id: str, at: Optional[datetime] = None) -> bool:
        with self._provider.session() as session:
            row = session.get(MicrositeModel, microsite_id)
            if row is None:
                return False
            row.collections_refreshed_at = at or utcnow()
            session.commit()
            return True

    # ---------------------------------------------------------------- collections

    def get_collection(self, microsite_id: str, slug: str) -> Optional[Dict[str, Any]]:
        with self._provider.session() as session:
            row = session.execute(
                select(CuratedCollectionModel)
                .where(CuratedCollectionModel.microsite_id == microsite_id)
                .where(CuratedCollectionModel.slug == slug)
            ).scalar_one_or_none()
            return self._collection_to_dict(row, with_products=False) if row else None

    def save_collection(
        self,
        *,
        microsite_id: str,
        slug: str,
        name: str,
        description: str,
        icon_emoji: str,
        collection_type: str,
        seasonal_months: Sequence[int],
        sort_order: int,
        products: Sequence[Tuple[str, Optional[str]]],
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Create or update a collection and replace its product list.

        ``products`` is an ordered list of (product_id, featured_reason).
        Returns (collection, created).
        """
        now = utcnow()
        with self._provider.session() as session:
            row = session.execute(
                select(CuratedCollectionModel)
                .where(CuratedCollectionModel.microsite_id == microsite_id)
                .where(CuratedCollectionModel.slug == slug)
            ).scalar_one_or_none()
            created = row is None
            if row is None:
                row = CuratedCollectionModel(microsite_id=microsite_id, slug=slug, created_at=now)
                session.add(row)
            row.name = name
            row.description = description
            row.icon_emoji = icon_emoji
            row.collection_type = collection_type
            row.set_seasonal_months(list(seasonal_months))
            row.sort_order = int(sort_order)
            row.is_active = True
            row.updated_at = now
            session.flush()

            session.execute(delete(ProductCollectionModel).where(ProductCollectionModel.collection_id == row.id))
            session.expire(row, ["products"])
            for index, (product_id, reason) in enumerate(products):
                session.add(
                    ProductCollectionModel(
                        collection_id=row.id,
                        product_id=product_id,
                        sort_order=index,
                        featured_reason=reason,
                    )
                )
            session.commit()
            session.refresh(row)
            return self._collection_to_dict(row, with_products=False), created

    def list_active_collections(self, microsite_id: str) -> List[Dict[str, Any]]:
        with self._provider.session() as session:
            rows = session.execute(
                select(CuratedCollectionModel)
                .options(selectinload(CuratedCollectionModel.products).selectinload(ProductCollectionModel.product))
                .where(CuratedCollectionModel.microsite_id == microsite_id)
                .where(CuratedCollectionModel.is_active.is_(True))
                .order_by(CuratedCollectionModel.sort_order, CuratedCollectionModel.id)
            ).scalars().all()
            return [self._collection_to_dict(r, with_products=True) for r in rows]

    # ---------------------------------------------------------------- mapping

    @staticmethod
    def _product_to_dict(row: ProductModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "supplier_id": row.supplier_id,
            "title": row.title or "",
            "description": row.description or "",
            "short_description": row.short_description or "",
            "categories": row.get_categories(),
            "tags": row.get_tags(),
            "price_from": row.price_from,
            "rating": row.rating,
            "review_count": int(row.review_count or 0),
            "booking_count": int(row.booking_count or 0),
            "created_at": as_utc(row.created_at),
        }

    @staticmethod
    def _microsite_to_dict(row: MicrositeModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "supplier_id": row.supplier_id,
            "site_id": row.site_id,
            "name": row.name,
            "slug": row.slug,
            "status": row.status,
            "collections_refreshed_at": iso(row.collections_refreshed_at),
        }

    @classmethod
    def _collection_to_dict(cls, row: CuratedCollectionModel, *, with_products: bool) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": int(row.id),
            "microsite_id": row.microsite_id,
            "slug": row.slug,
            "name": row.name,
            "description": row.description,
            "icon_emoji": row.icon_emoji,
            "collection_type": row.collection_type,
            "seasonal_months": row.get_seasonal_months(),
            "is_active": bool(row.is_active),
            "sort_order": int(row.sort_order or 0),
            "updated_at": iso(row.updated_at),
        }
        if with_products:
            data["products"] = [
                {**cls._product_to_dict(link.product), "featured_reason": link.featured_reason}
                for link in row.products
                if link.product is not None
            ]
        return data
