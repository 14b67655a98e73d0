"""
Domain lifecycle jobs: register -> verify (zone + DNS) -> SSL -> ACTIVE.

Each step enqueues the next one, so a failure only retries the step that
failed. DNS is always served by Cloudflare; domains bought elsewhere get
their nameservers pointed at the Cloudflare zone during verification.
"""

from __future__ import annotations

import logging

from marketplace_jobs.application.services.pause_control import Feature, RateLimitKind
from marketplace_jobs.core.circuit_breaker import CLOUDFLARE_BREAKER
from marketplace_jobs.core.errors import (
    BusinessLogicError,
    ConfigurationError,
    ErrorCategory,
    ErrorSeverity,
    JobError,
    NotFoundError,
)
from marketplace_jobs.domain.types import (
    DomainRegisterPayload,
    DomainStatus,
    DomainVerifyPayload,
    JobContext,
    JobOptions,
    JobResult,
    JobType,
    SslProvisionPayload,
    SslRenewalCheckPayload,
    paused_result,
    utcnow,
)

logger = logging.getLogger(__name__)

# Give the registrar time to publish the new domain before the first verification.
VERIFY_DELAY_SECONDS = 60


def registrar_breaker(registrar: str) -> str:
    return f"{registrar}-registrar"


def _load_domain(services, domain_id: str) -> dict:
    domain = services.domains.get_domain(domain_id)
    if domain is None:
        raise NotFoundError("Domain", domain_id)
    return domain


async def handle_domain_register(services, payload: DomainRegisterPayload, job_ctx: JobContext) -> JobResult:
    decision = services.safeguards.can_execute_autonomous_operation(
        site_id=payload.site_id,
        feature=Feature.DOMAIN_REGISTRATION,
        rate_limit=RateLimitKind.DOMAIN_REGISTER,
    )
    if not decision.allowed:
        logger.info("Domain registration for %s skipped: %s", payload.domain, decision.reason)
        return paused_result(decision.reason)

    registrar = services.registrar(payload.registrar)
    existing = services.domains.get_domain_by_name(payload.domain)
    if existing:
        if not _is_own_pending_registration(existing, payload):
            raise BusinessLogicError(
                f"Domain {payload.domain} is already registered", context={"domain": payload.domain}
            )
        # An earlier attempt bought the domain and failed afterwards; never buy twice.
        logger.info("Resuming registration of %s (domain %s) after the purchase", payload.domain, existing["id"])
        return await _finish_registration(services, registrar, payload, existing, resumed=True)

    breaker = services.breakers.get_breaker(registrar_breaker(payload.registrar))
    availability = await breaker.execute(registrar.check_availability, payload.domain)
    if not availability.available:
        raise BusinessLogicError(
            f"Domain {payload.domain} is not available for registration",
            context={"domain": payload.domain, "registrar": payload.registrar},
        )

    registration = await breaker.execute(registrar.register_domain, payload.domain, auto_renew=payload.auto_renew)
    cost = registration.charged_amount if registration.charged_amount is not None else availability.price
    try:
        record = services.domains.create_domain(
            domain=payload.domain,
            site_id=payload.site_id,
            registrar=payload.registrar,
            status=DomainStatus.REGISTERING,
            registrar_order_id=registration.order_id,
            registered_at=registration.registered_at,
            expires_at=registration.expires_at,
            auto_renew=registration.auto_renew,
            registration_cost=cost,
        )
    except Exception as exc:
        # The purchase went through but nothing records it; retrying would hit "not available".
        logger.error(
            "Bought %s (order %s) but could not record it: %s", payload.domain, registration.order_id, exc
        )
        raise JobError(
            f"Domain {payload.domain} was purchased but could not be recorded",
            category=ErrorCategory.DATABASE,
            severity=ErrorSeverity.CRITICAL,
            retryable=False,
            context={"domain": payload.domain, "order_id": registration.order_id, "site_id": payload.site_id},
            original_error=exc,
        ) from exc

    return await _finish_registration(services, registrar, payload, record, resumed=False)


def _is_own_pending_registration(record: dict, payload: DomainRegisterPayload) -> bool:
    return (
        record.get("status") == DomainStatus.REGISTERING.value
        and record.get("site_id") == payload.site_id
        and record.get("registrar") == payload.registrar
        and record.get("registered_at") is not None
    )


async def _finish_registration(services, registrar, payload: DomainRegisterPayload, record: dict, *, resumed: bool):
    """Steps after the purchase; safe to repeat on retry."""
    if record.get("renewal_cost") is None:
        renewal_cost = await registrar.get_renewal_price(payload.domain)
        record = services.domains.update_domain(record["id"], renewal_cost=renewal_cost) or record

    verify_job_id = await services.queues.add_job(
        JobType.DOMAIN_VERIFY,
        {"site_id": payload.site_id, "domain_id": record["id"], "verification_method": "dns"},
        JobOptions(delay=VERIFY_DELAY_SECONDS),
    )
    logger.info("Registered %s for site %s (domain %s)", payload.domain, payload.site_id, record["id"])
    expires_at = record.get("expires_at")
    return JobResult(
        success=True,
        message=f"Registered {payload.domain}",
        data={
            "domain_id": record["id"],
            "domain": payload.domain,
            "registrar": payload.registrar,
            "order_id": record.get("registrar_order_id"),
            "cost": record.get("registration_cost"),
            "expires_at": expires_at.isoformat() if expires_at else None,
            "verify_job_id": verify_job_id,
            "resumed": resumed,
        },
    )


async def handle_domain_verify(services, payload: DomainVerifyPayload, job_ctx: JobContext) -> JobResult:
    domain = _load_domain(services, payload.domain_id)
    decision = services.safeguards.is_processing_allowed(domain.get("site_id"))
    if not decision.allowed:
        return paused_result(decision.reason)

    name = domain["domain"]
    cloudflare = services.breakers.get_breaker(CLOUDFLARE_BREAKER)
    zone = await cloudflare.execute(services.dns.ensure_zone, name)
    zone_id = zone["id"]
    if domain.get("cloudflare_zone_id") != zone_id:
        services.domains.update_domain(domain["id"], cloudflare_zone_id=zone_id)

    zone_active = zone.get("status") == "active"
    nameservers = zone.get("name_servers") or []
    if not zone_active and domain.get("registrar") == "namecheap" and nameservers:
        registrar = services.registrar("namecheap")
        await services.breakers.get_breaker(registrar_breaker("namecheap")).execute(
            registrar.set_nameservers, name, nameservers
        )

    if payload.verification_method == "dns":
        if not zone_active:
            raise JobError(
                f"Cloudflare zone for {name} is {zone.get('status')}; waiting for nameservers to propagate",
                category=ErrorCategory.EXTERNAL_API,
                severity=ErrorSeverity.RECOVERABLE,
                context={"domain": name, "zone_id": zone_id, "name_servers": nameservers},
            )
    else:
        status, _ = await services.http.check_url(f"http://{name}")
        if status is None or status >= 500:
            raise JobError(
                f"{name} is not reachable over HTTP yet (status={status})",
                category=ErrorCategory.NETWORK,
                severity=ErrorSeverity.RECOVERABLE,
                context={"domain": name, "status": status},
            )

    services.domains.update_domain(
        domain["id"],
        verified_at=utcnow(),
        verification_method=payload.verification_method,
        status=DomainStatus.DNS_PENDING,
        error_message=None,
    )

    hosting = services.settings.hosting
    if not hosting.root_target:
        raise ConfigurationError("HOSTING_ROOT_TARGET is not configured; cannot create DNS records")
    records = await cloudflare.execute(
        services.dns.setup_standard_records,
        zone_id,
        name,
        hosting.root_target,
        www_target=hosting.www_target or None,
        enable_www=hosting.enable_www,
        proxied=hosting.proxied,
    )
    services.domains.update_domain(domain["id"], dns_configured=True, status=DomainStatus.SSL_PENDING)

    ssl_job_id = await services.queues.add_job(
        JobType.SSL_PROVISION,
        {"site_id": domain.get("site_id"), "domain_id": domain["id"], "provider": "cloudflare"},
    )
    return JobResult(
        success=True,
        message=f"Verified {name} and configured DNS",
        data={
            "domain_id": domain["id"],
            "zone_id": zone_id,
            "verification_method": payload.verification_method,
            "records": [r.get("id") for r in records],
            "ssl_job_id": ssl_job_id,
        },
    )


async def handle_ssl_provision(services, payload: SslProvisionPayload, job_ctx: JobContext) -> JobResult:
    domain = _load_domain(services, payload.domain_id)
    decision = services.safeguards.can_execute_autonomous_operation(
        site_id=domain.get("site_id"),
        feature=Feature.SSL_PROVISIONING,
    )
    if not decision.allowed:
        return paused_result(decision.reason)

    if not domain.get("verified_at"):
        raise BusinessLogicError(f"Domain {domain['domain']} must be verified before SSL provisioning")
    if payload.provider != "cloudflare":
        raise BusinessLogicError(
            f"SSL provider '{payload.provider}' is not supported; certificates are issued by Cloudflare",
            context={"provider": payload.provider},
        )

    certificate = await services.ssl.provision_certificate(
        domain["domain"],
        zone_id=domain.get("cloudflare_zone_id"),
        ssl_mode=services.settings.ssl.mode,
    )
    services.domains.update_domain(
        domain["id"],
        ssl_enabled=True,
        ssl_expires_at=certificate.expires_at,
        status=DomainStatus.ACTIVE,
        error_message=None,
    )
    if domain.get("site_id"):
        services.domains.set_primary_domain_if_empty(domain["site_id"], domain["domain"])

    logger.info("SSL active for %s (expires %s)", domain["domain"], certificate.expires_at)
    return JobResult(
        success=True,
        message=f"SSL provisioned for {domain['domain']}",
        data={"domain_id": domain["id"], **certificate.to_dict()},
    )


async def handle_ssl_renewal_check(services, payload: SslRenewalCheckPayload, job_ctx: JobContext) -> JobResult:
    decision = services.safeguards.can_execute_autonomous_operation(feature=Feature.SSL_PROVISIONING)
    if not decision.allowed:
        return paused_result(decision.reason)

    domains = services.domains.list_active_ssl_domains()
    needing = await services.ssl.get_certificates_needing_renewal(domains, threshold_days=payload.threshold_days)
    enqueued = []
    for d in needing:
        job_id = await services.queues.add_job(
            JobType.SSL_PROVISION,
            {"site_id": d.get("site_id"), "domain_id": d["id"], "provider": "cloudflare"},
        )
        enqueued.append({"domain": d["domain"], "job_id": job_id, "reason": d.get("reason")})

    return JobResult(
        success=True,
        message=f"Checked {len(domains)} certificates, {len(enqueued)} need renewal",
        data={"checked": len(domains), "renewals": enqueued},
    )


def mark_domain_failed(services, domain_id: str, error: JobError) -> None:
    """Dead-letter hook for verify/provision jobs."""
    if services.domains.update_domain(domain_id, status=DomainStatus.FAILED, error_message=error.message):
        logger.warning("Domain %s marked FAILED: %s", domain_id, error.message)
