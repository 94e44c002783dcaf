import logging
from typing import Annotated, Awaitable, Callable

from fastapi import APIRouter, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.balance.service import BalanceChange
from credit_ledger.config import settings
from credit_ledger.core.dependencies import DbSession
from credit_ledger.core.exceptions import AppError, ValidationError
from credit_ledger.payments import service as payment_service
from credit_ledger.payments.models import WebhookOutcome, WebhookProvider
from credit_ledger.payments.schemas import PaymentEvent, WebhookAck
from credit_ledger.payments.signatures import verify_opennode_signature, verify_stripe_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _reconcile(
    db: AsyncSession,
    provider: WebhookProvider,
    event_type: str | None,
    event: PaymentEvent,
    apply: Callable[[AsyncSession, PaymentEvent], Awaitable[BalanceChange]],
) -> WebhookAck:
    try:
        change = await apply(db, event)
    except ValidationError as exc:
        await payment_service.record_webhook(
            db, provider, WebhookOutcome.REJECTED,
            event_id=event.external_event_id, event_type=event_type, detail=exc.message,
        )
        raise
    except Exception as exc:
        # Non-2xx makes the payment rail redeliver; the event key keeps that safe.
        logger.exception("%s webhook %s failed", provider.value, event.external_event_id)
        await payment_service.record_webhook(
            db, provider, WebhookOutcome.FAILED,
            event_id=event.external_event_id, event_type=event_type, detail=str(exc),
        )
        raise HTTPException(status_code=500, detail="Webhook handler failed")

    outcome = WebhookOutcome.DUPLICATE if change.replayed else WebhookOutcome.PROCESSED
    await payment_service.record_webhook(
        db, provider, outcome,
        event_id=event.external_event_id,
        event_type=event_type,
        payload=event.model_dump(mode="json"),
    )
    return WebhookAck(
        outcome=outcome,
        event_id=event.external_event_id,
        credits_added=None if change.replayed else change.transaction.amount,
        new_balance=change.new_balance,
    )


async def _reject(db: AsyncSession, provider: WebhookProvider, exc: AppError) -> None:
    logger.warning("Rejected %s webhook: %s", provider.value, exc.message)
    await payment_service.record_webhook(db, provider, WebhookOutcome.REJECTED, detail=exc.message)


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    db: DbSession,
    stripe_signature: Annotated[str | None, Header()] = None,
) -> WebhookAck:
    payload = await request.body()
    try:
        stripe_event = verify_stripe_signature(
            payload,
            stripe_signature,
            settings.stripe_webhook_secret,
            settings.stripe_webhook_tolerance_seconds,
        )
        event_type, event_id, event = payment_service.parse_stripe_event(stripe_event.to_dict())
    except AppError as exc:
        await _reject(db, WebhookProvider.STRIPE, exc)
        raise

    if event is None:
        logger.info("Ignoring Stripe event %s (%s)", event_id, event_type)
        await payment_service.record_webhook(
            db, WebhookProvider.STRIPE, WebhookOutcome.IGNORED,
            event_id=event_id, event_type=event_type,
        )
        return WebhookAck(outcome=WebhookOutcome.IGNORED, event_id=event_id)

    return await _reconcile(
        db, WebhookProvider.STRIPE, event_type, event, payment_service.apply_card_payment
    )


@router.post("/opennode", response_model=WebhookAck)
async def opennode_webhook(request: Request, db: DbSession) -> WebhookAck:
    fields = payment_service.parse_opennode_payload(await request.body())
    charge_id = fields.get("id", "")
    status = fields.get("status", "")
    try:
        verify_opennode_signature(charge_id, fields.get("hashed_order"), settings.opennode_api_key)
        if status != "paid":
            event = None
        else:
            event = payment_service.opennode_payment_event(fields)
    except AppError as exc:
        await _reject(db, WebhookProvider.OPENNODE, exc)
        raise

    if event is None:
        # expired / underpaid / processing / refunded: acknowledged, nothing to credit
        logger.info("OpenNode charge %s is %s, nothing to credit", charge_id, status)
        await payment_service.record_webhook(
            db, WebhookProvider.OPENNODE, WebhookOutcome.IGNORED,
            event_id=charge_id, event_type=status,
        )
        return WebhookAck(outcome=WebhookOutcome.IGNORED, event_id=charge_id)

    return await _reconcile(
        db, WebhookProvider.OPENNODE, status, event, payment_service.apply_bitcoin_payment
    )
