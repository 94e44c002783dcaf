"""
Payment reconcilers: card (Stripe) and Bitcoin/Lightning (OpenNode).

Each turns a verified payment-completed event into one idempotent credit.
The (source, external_event_id) key makes at-least-once delivery safe.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping
from urllib.parse import parse_qs, parse_qsl, urlparse

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.balance import service as balance_service
from credit_ledger.balance.service import BalanceChange
from credit_ledger.core.exceptions import ValidationError
from credit_ledger.ledger.models import TransactionSource
from credit_ledger.payments.models import WebhookEvent, WebhookOutcome, WebhookProvider
from credit_ledger.payments.schemas import PaymentEvent

logger = logging.getLogger(__name__)

STRIPE_CREDIT_EVENTS = frozenset(
    {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
)


async def _apply_payment(
    db: AsyncSession, event: PaymentEvent, source: TransactionSource, label: str
) -> BalanceChange:
    metadata: dict[str, Any] = {}
    if event.amount_paid_minor is not None:
        metadata["amount_paid_minor"] = event.amount_paid_minor
    if event.currency:
        metadata["currency"] = event.currency
    if event.package_name:
        metadata["package_name"] = event.package_name

    description = f"{label}: {event.credits} credits"
    if event.package_name:
        description = f"{label}: {event.package_name} ({event.credits} credits)"

    return await balance_service.run_atomic(
        db,
        lambda: balance_service.credit(
            db,
            event.account_id,
            event.credits,
            source,
            external_event_id=event.external_event_id,
            description=description,
            metadata=metadata or None,
        ),
    )


async def apply_card_payment(db: AsyncSession, event: PaymentEvent) -> BalanceChange:
    """Credit a completed card checkout. The signature was checked upstream."""
    return await _apply_payment(db, event, TransactionSource.STRIPE_PAYMENT, "Card payment")


async def apply_bitcoin_payment(db: AsyncSession, event: PaymentEvent) -> BalanceChange:
    """Credit a settled Lightning/on-chain invoice. Safe to call twice per invoice."""
    return await _apply_payment(db, event, TransactionSource.BITCOIN_PAYMENT, "Bitcoin payment")


def _event(**fields: Any) -> PaymentEvent:
    try:
        return PaymentEvent(**fields)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid payment event: {exc.errors()[0]['msg']}")


def parse_stripe_event(event: Mapping[str, Any]) -> tuple[str, str | None, PaymentEvent | None]:
    """
    Takes a verified Stripe event and returns (event type, event id, payment
    event). The payment event is None for event types and sessions that do not
    grant credits.
    """
    event_type = str(event.get("type") or "")
    event_id = event.get("id")
    if event_type not in STRIPE_CREDIT_EVENTS:
        return event_type, event_id, None

    session = (event.get("data") or {}).get("object") or {}
    if session.get("payment_status") not in (None, "paid", "no_payment_required"):
        return event_type, event_id, None

    metadata = session.get("metadata") or {}
    account_id = metadata.get("userId") or session.get("client_reference_id")
    credits = metadata.get("credits")
    if not account_id or not credits:
        raise ValidationError("Checkout session is missing userId/credits metadata")

    return event_type, event_id, _event(
        account_id=account_id,
        credits=credits,
        external_event_id=session.get("id") or "",
        amount_paid_minor=session.get("amount_total"),
        currency=session.get("currency"),
        package_name=metadata.get("packageName"),
    )


def parse_opennode_payload(body: bytes) -> dict[str, str]:
    return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))


def opennode_payment_event(fields: dict[str, str]) -> PaymentEvent:
    """Account and credits ride on custom metadata fields or the success_url query."""
    query: dict[str, list[str]] = {}
    if fields.get("success_url"):
        query = parse_qs(urlparse(fields["success_url"]).query)

    def _pick(name: str) -> str | None:
        value = fields.get(name) or fields.get(f"metadata_{name}")
        if not value and query.get(name):
            value = query[name][0]
        return value or None

    account_id = _pick("userId")
    credits = _pick("credits")
    if not account_id or not credits:
        raise ValidationError("OpenNode charge is missing userId/credits metadata")

    try:
        sats = int(fields["price"]) if fields.get("price") else None
    except ValueError:
        sats = None
    try:
        credits_value = Decimal(credits)
    except InvalidOperation:
        raise ValidationError(f"Invalid credits value: {credits!r}")

    return _event(
        account_id=account_id,
        credits=credits_value,
        external_event_id=fields.get("id", ""),
        amount_paid_minor=sats,
        currency="BTC",
        package_name=_pick("packageName") or _pick("package"),
    )


async def record_webhook(
    db: AsyncSession,
    provider: WebhookProvider,
    outcome: WebhookOutcome,
    *,
    event_id: str | None = None,
    event_type: str | None = None,
    detail: str | None = None,
    payload: dict[str, Any] | None = None,
) -> WebhookEvent:
    entry = WebhookEvent(
        provider=provider,
        event_id=event_id,
        event_type=event_type,
        outcome=outcome,
        detail=detail,
        payload=payload,
    )
    db.add(entry)
    await db.commit()
    return entry


async def list_webhook_events(
    db: AsyncSession, provider: WebhookProvider | None = None, limit: int = 50
) -> list[WebhookEvent]:
    q = select(WebhookEvent)
    if provider is not None:
        q = q.where(WebhookEvent.provider == provider)
    result = await db.execute(q.order_by(WebhookEvent.created_at.desc()).limit(limit))
    return list(result.scalars().all())
