"""
Typed configuration for the ordering services.

Values come from the ``ORDERING`` dict in Django settings and are read once,
when a service is built. Services receive these objects through their
constructors.
"""
from __future__ import annotations

from dataclasses import dataclass, field


def _ordering_settings() -> dict:
    from django.conf import settings

    return getattr(settings, "ORDERING", {})


@dataclass(frozen=True)
class CheckoutConfig:
    order_number_prefix: str = "ORD"
    invoice_number_prefix: str = "INV"
    invoice_due_days: int = 30
    number_attempts: int = 5

    @classmethod
    def from_settings(cls) -> CheckoutConfig:
        values = _ordering_settings()
        return cls(
            order_number_prefix=values.get("ORDER_NUMBER_PREFIX", "ORD"),
            invoice_number_prefix=values.get("INVOICE_NUMBER_PREFIX", "INV"),
            invoice_due_days=int(values.get("INVOICE_DUE_DAYS", 30)),
        )


@dataclass(frozen=True)
class NotificationConfig:
    company_name: str = "Market"
    site_url: str = "http://localhost:8000"
    support_email: str = ""
    currency: str = "GBP"
    admin_emails: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls) -> NotificationConfig:
        values = _ordering_settings()
        return cls(
            company_name=values.get("COMPANY_NAME", "Market"),
            site_url=values.get("SITE_URL", "http://localhost:8000").rstrip("/"),
            support_email=values.get("SUPPORT_EMAIL", ""),
            currency=values.get("CURRENCY", "GBP"),
            admin_emails=tuple(values.get("ADMIN_NOTIFICATION_EMAILS", ())),
        )


@dataclass(frozen=True)
class DispatchConfig:
    max_attempts: int = 3
    claim_ttl_seconds: int = 300
    send_timeout_seconds: float = 30.0
    jitter_seconds: int = 30
    batch_size: int = 100
    send_concurrency: int = 4
    from_email: str | None = None

    @classmethod
    def from_settings(cls) -> DispatchConfig:
        from django.conf import settings

        values = _ordering_settings()
        return cls(
            max_attempts=int(values.get("NOTIFICATION_MAX_ATTEMPTS", 3)),
            claim_ttl_seconds=int(values.get("NOTIFICATION_CLAIM_TTL_SECONDS", 300)),
            send_timeout_seconds=float(values.get("NOTIFICATION_SEND_TIMEOUT_SECONDS", 30)),
            jitter_seconds=int(values.get("NOTIFICATION_JITTER_SECONDS", 30)),
            batch_size=int(values.get("NOTIFICATION_BATCH_SIZE", 100)),
            send_concurrency=int(values.get("NOTIFICATION_SEND_CONCURRENCY", 4)),
            from_email=getattr(settings, "DEFAULT_FROM_EMAIL", None),
        )
