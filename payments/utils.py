"""Utility helpers for the payments app."""

import hmac, hashlib, logging, secrets
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone


logger = logging.getLogger(__name__)


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, received_sig: str, secret: str) -> bool:
    """Check a webhook signature against the exact bytes that were received.

    Paystack signs the raw request body with HMAC-SHA512 keyed by the
    secret key and sends the hex digest in ``X-Paystack-Signature``. The body
    must not be re-serialized before this check: any difference in
    whitespace or key order changes the digest.

    Raises :class:`ImproperlyConfigured` when no secret is configured, since
    every signature would otherwise be unverifiable.
    """
    if not secret:
        logger.error("PAYSTACK_SECRET_KEY missing; cannot verify webhook signature")
        raise ImproperlyConfigured("PAYSTACK_SECRET_KEY setting is required to verify webhooks")
    expected = compute_signature(raw_body or b"", secret)
    return hmac.compare_digest(expected, (received_sig or "").strip().lower())


def gen_payment_reference(order_id) -> str:
    # e.g. order_42_1718000000000a3f9; new for every initialize attempt
    ms = int(timezone.now().timestamp() * 1000)
    return f"order_{order_id}_{ms}{secrets.token_hex(2)}"
