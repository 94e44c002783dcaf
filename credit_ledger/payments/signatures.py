"""Transport-level signature checks for the payment webhooks."""
import hashlib
import hmac

import stripe

from credit_ledger.core.exceptions import ValidationError, WebhookSignatureError


def verify_stripe_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int = 300,
) -> stripe.Event:
    """Check the Stripe-Signature header and return the decoded event."""
    if not secret:
        raise WebhookSignatureError("Stripe webhook secret is not configured")
    if not header:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    try:
        return stripe.Webhook.construct_event(payload, header, secret, tolerance=tolerance_seconds)
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError("Invalid Stripe signature") from exc
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON")


def opennode_order_hash(charge_id: str, api_key: str) -> str:
    return hmac.new(api_key.encode("utf-8"), charge_id.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_opennode_signature(charge_id: str, hashed_order: str | None, api_key: str) -> None:
    """OpenNode signs each charge as hex HMAC-SHA256(api_key, charge id)."""
    if not api_key:
        raise WebhookSignatureError("OpenNode API key is not configured")
    if not charge_id or not hashed_order:
        raise WebhookSignatureError("Missing OpenNode charge id or hashed_order")
    if not hmac.compare_digest(opennode_order_hash(charge_id, api_key), hashed_order):
        raise WebhookSignatureError("Invalid OpenNode signature")
