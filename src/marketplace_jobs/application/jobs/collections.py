from __future__ import annotations

import logging

from marketplace_jobs.application.services.pause_control import Feature, RateLimitKind
from marketplace_jobs.core.errors import NotFoundError
from marketplace_jobs.domain.types import (
    CollectionGeneratePayload,
    CollectionRefreshPayload,
    JobContext,
    JobResult,
    paused_result,
)

logger = logging.getLogger(__name__)


async def handle_collection_generate(services, payload: CollectionGeneratePayload, job_ctx: JobContext) -> JobResult:
    microsite = services.catalog.get_microsite(payload.microsite_id, with_products=False)
    if microsite is None:
        raise NotFoundError("Microsite", payload.microsite_id)

    decision = services.safeguards.can_execute_autonomous_operation(
        site_id=payload.site_id or microsite.get("site_id"),
        feature=Feature.COLLECTION_GENERATION,
        rate_limit=RateLimitKind.COLLECTION_GENERATE,
    )
    if not decision.allowed:
        return paused_result(decision.reason)

    result = services.collections.generate_collections_for_microsite(
        payload.microsite_id,
        collection_types=payload.collection_types,
        min_products_per_collection=payload.min_products_per_collection,
        force_regenerate=payload.force_regenerate,
    )
    return JobResult(
        success=True,
        message=f"Generated collections for microsite {payload.microsite_id}",
        data={"microsite_id": payload.microsite_id, **result.to_dict()},
    )


async def handle_collection_refresh(services, payload: CollectionRefreshPayload, job_ctx: JobContext) -> JobResult:
    decision = services.safeguards.can_execute_autonomous_operation(feature=Feature.COLLECTION_GENERATION)
    if not decision.allowed:
        return paused_result(decision.reason)

    summary = services.collections.refresh_all_collections(
        percent_per_run=payload.percent_per_run,
        max_per_run=payload.max_per_run,
        force_regenerate=payload.force_regenerate,
    )
    if summary["errors"]:
        logger.warning("Collection refresh finished with %d microsite errors", len(summary["errors"]))
    return JobResult(
        success=True,
        message=f"Refreshed collections for {summary['processed']} of {summary['total']} microsites",
        data=summary,
    )
