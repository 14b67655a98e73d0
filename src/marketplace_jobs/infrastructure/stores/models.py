from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return uuid.uuid4().hex


def _dump(data: Any) -> str:
    return json.dumps(data if data is not None else {}, ensure_ascii=False, default=str)


def _load(raw: Optional[str], default: Any) -> Any:
    try:
        return json.loads(raw) if raw else default
    except Exception:
        return default


class SiteModel(Base):
    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(256), default="")
    slug: Mapped[str] = mapped_column(String(128), default="", index=True)
    primary_domain: Mapped[Optional[str]] = mapped_column(String(253), nullable=True)
    autonomous_processes_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    pause_reason: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    domains = relationship("DomainModel", back_populates="site")


class DomainModel(Base):
    __tablename__ = "domains"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    domain: Mapped[str] = mapped_column(String(253), unique=True, index=True)
    site_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("sites.id"), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(32), default="PENDING", index=True)

    registrar: Mapped[str] = mapped_column(String(32), default="cloudflare")
    registrar_order_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    registered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True)
    registration_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    renewal_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verification_method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    cloudflare_zone_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    dns_configured: Mapped[bool] = mapped_column(Boolean, default=False)

    ssl_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    ssl_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    site = relationship("SiteModel", back_populates="domains")


class JobModel(Base):
    """Durable record of every queued job; the source of truth for job status."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    type: Mapped[str] = mapped_column(String(64), index=True)
    queue: Mapped[str] = mapped_column(String(32), index=True)
    status: Mapped[str] = mapped_column(String(16), default="PENDING", index=True)

    site_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    # "<type>:<subject>" where subject is site_id / domain_id / microsite_id
    dedup_key: Mapped[str] = mapped_column(String(256), default="", index=True)
    # "<queue>:<arq job id>" once the job is enqueued
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    priority: Mapped[int] = mapped_column(Integer, default=5)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)

    payload_json: Mapped[str] = mapped_column(Text, default="{}")
    result_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # completed without doing its work (paused site, disabled feature, rate limit)
    skipped: Mapped[bool] = mapped_column(Boolean, default=False)

    scheduled_for: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def set_payload(self, data: Dict[str, Any]) -> None:
        self.payload_json = _dump(data)

    def get_payload(self) -> Dict[str, Any]:
        return _load(self.payload_json, {})

    def set_result(self, data: Optional[Dict[str, Any]]) -> None:
        self.result_json = _dump(data) if data is not None else None

    def get_result(self) -> Optional[Dict[str, Any]]:
        return _load(self.result_json, None)


class JobErrorModel(Base):
    __tablename__ = "job_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    job_type: Mapped[str] = mapped_column(String(64), default="", index=True)
    queue: Mapped[str] = mapped_column(String(32), default="")
    site_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    error_name: Mapped[str] = mapped_column(String(128), default="")
    error_message: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(32), default="UNKNOWN", index=True)
    severity: Mapped[str] = mapped_column(String(16), default="RECOVERABLE", index=True)
    retryable: Mapped[bool] = mapped_column(Boolean, default=True)
    attempts_made: Mapped[int] = mapped_column(Integer, default=0)

    context_json: Mapped[str] = mapped_column(Text, default="{}")
    stack_trace: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    def set_context(self, data: Dict[str, Any]) -> None:
        self.context_json = _dump(data)

    def get_context(self) -> Dict[str, Any]:
        return _load(self.context_json, {})


class PlatformSettingsModel(Base):
    """Single-row table holding platform-wide kill switches and limits."""

    __tablename__ = "platform_settings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default="platform")
    all_autonomous_processes_paused: Mapped[bool] = mapped_column(Boolean, default=False)
    pause_reason: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    enable_domain_registration: Mapped[bool] = mapped_column(Boolean, default=True)
    enable_ssl_provisioning: Mapped[bool] = mapped_column(Boolean, default=True)
    enable_collection_generation: Mapped[bool] = mapped_column(Boolean, default=True)

    max_domain_registrations_per_day: Mapped[int] = mapped_column(Integer, default=10)
    max_collection_jobs_per_hour: Mapped[int] = mapped_column(Integer, default=100)

    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class SupplierModel(Base):
    __tablename__ = "suppliers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(256), default="")
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    products = relationship("ProductModel", back_populates="supplier")


class ProductModel(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    supplier_id: Mapped[str] = mapped_column(String(64), ForeignKey("suppliers.id"), index=True)
    title: Mapped[str] = mapped_column(String(512), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    short_description: Mapped[str] = mapped_column(Text, default="")
    categories_json: Mapped[str] = mapped_column(Text, default="[]")
    tags_json: Mapped[str] = mapped_column(Text, default="[]")

    price_from: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    booking_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    supplier = relationship("SupplierModel", back_populates="products")

    def set_categories(self, values: List[str]) -> None:
        self.categories_json = json.dumps(list(values or []), ensure_ascii=False)

    def get_categories(self) -> List[str]:
        return _load(self.categories_json, [])

    def set_tags(self, values: List[str]) -> None:
        self.tags_json = json.dumps(list(values or []), ensure_ascii=False)

    def get_tags(self) -> List[str]:
        return _load(self.tags_json, [])


class MicrositeModel(Base):
    __tablename__ = "microsites"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    supplier_id: Mapped[str] = mapped_column(String(64), ForeignKey("suppliers.id"), index=True)
    site_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(256), default="")
    slug: Mapped[str] = mapped_column(String(128), default="")
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE", index=True)
    collections_refreshed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    collections = relationship("CuratedCollectionModel", back_populates="microsite", cascade="all, delete-orphan")


class CuratedCollectionModel(Base):
    __tablename__ = "curated_collections"
    __table_args__ = (UniqueConstraint("microsite_id", "slug", name="uq_collection_microsite_slug"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    microsite_id: Mapped[str] = mapped_column(String(64), ForeignKey("microsites.id"), index=True)
    slug: Mapped[str] = mapped_column(String(128))
    name: Mapped[str] = mapped_column(String(256), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    icon_emoji: Mapped[str] = mapped_column(String(16), default="")
    collection_type: Mapped[str] = mapped_column(String(16), default="THEMATIC")
    seasonal_months_json: Mapped[str] = mapped_column(Text, default="[]")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    microsite = relationship("MicrositeModel", back_populates="collections")
    products = relationship(
        "ProductCollectionModel",
        back_populates="collection",
        cascade="all, delete-orphan",
        order_by="ProductCollectionModel.sort_order",
    )

    def set_seasonal_months(self, months: List[int]) -> None:
        self.seasonal_months_json = json.dumps(list(months or []))

    def get_seasonal_months(self) -> List[int]:
        return _load(self.seasonal_months_json, [])


class ProductCollectionModel(Base):
    __tablename__ = "product_collections"
    __table_args__ = (UniqueConstraint("collection_id", "product_id", name="uq_product_collection"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    collection_id: Mapped[int] = mapped_column(Integer, ForeignKey("curated_collections.id"), index=True)
    product_id: Mapped[str] = mapped_column(String(64), ForeignKey("products.id"), index=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    featured_reason: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    collection = relationship("CuratedCollectionModel", back_populates="products")
    product = relationship("ProductModel")


class JobEventModel(Base):
    __tablename__ = "job_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(64), index=True)
    job_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    job_type: Mapped[str] = mapped_column(String(64), default="")
    queue: Mapped[str] = mapped_column(String(32), default="")
    stage: Mapped[str] = mapped_column(String(64), default="")
    attempt: Mapped[int] = mapped_column(Integer, default=0)
    type: Mapped[str] = mapped_column(String(32), default="", index=True)
    payload_json: Mapped[str] = mapped_column(Text, default="{}")
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    def set_payload(self, data: Dict[str, Any]) -> None:
        self.payload_json = _dump(data)

    def get_payload(self) -> Dict[str, Any]:
        return _load(self.payload_json, {})
