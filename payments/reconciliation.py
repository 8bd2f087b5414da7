"""Converge local order state with the gateway's payment outcome.

Two independent triggers land here: the Paystack webhook (push) and the
customer's manual verification (pull). Both end in :func:`apply_success` or
:func:`apply_failure`, which make the transition with a single conditional
UPDATE on ``payment_status``. Whichever trigger wins that UPDATE runs the
side effects (cart clear, stock decrement, receipt email); the loser sees
zero rows updated and reports "already processed".
"""
import json
import logging
from dataclasses import dataclass, field

from django.db import transaction
from django.db.models import F, Q, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from cart.services import clear_cart
from catalog.services import decrement_stock_for_lines
from orders.models import Order, OrderStatus, PaymentStatus
from storefront.errors import InvalidSignature, OrderNotFound, ValidationError

from .emails import queue_payment_confirmation
from .paystack import parse_metadata

logger = logging.getLogger(__name__)

SUCCESS_EVENT = "charge.success"
FAILED_EVENT = "charge.failed"

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_PENDING = "pending"
OUTCOME_IGNORED = "ignored"


@dataclass
class ReconciliationResult:
    order: Order | None
    outcome: str
    applied: bool = False
    gateway_response: str = ""
    stock_failures: list = field(default_factory=list)

    @property
    def already_processed(self) -> bool:
        return self.order is not None and not self.applied and self.order.is_paid


def _gateway_changes(reference, payload) -> dict:
    """Columns to write for what the gateway reported.

    The order keeps the reference the customer was last given; a payment made
    on an earlier checkout page only fills it when none is set. The reference
    the gateway actually reported is kept in ``gateway_meta``.
    """
    changes = {}
    if reference:
        changes["payment_reference"] = Coalesce(F("payment_reference"), Value(reference))
    if payload is not None or reference:
        meta = dict(payload or {})
        if reference:
            meta["reference"] = reference
        changes["gateway_meta"] = meta
    return changes


def by_reference(queryset, reference):
    """Orders matching either the current reference or the one that paid."""
    return queryset.filter(Q(payment_reference=reference) | Q(gateway_meta__reference=reference))


def apply_success(order_id, *, reference=None, payload=None) -> ReconciliationResult:
    now = timezone.now()
    changes = {
        "payment_status": PaymentStatus.SUCCESS,
        "order_status": OrderStatus.PROCESSING,
        "paid_at": now,
        "updated_at": now,
    }
    changes.update(_gateway_changes(reference, payload))

    with transaction.atomic():
        updated = (
            Order.objects.filter(pk=order_id)
            .exclude(payment_status=PaymentStatus.SUCCESS)
            .update(**changes)
        )
        if not updated:
            order = Order.objects.filter(pk=order_id).first()
            if order is None:
                raise OrderNotFound(f"Order {order_id} not found")
            logger.info("Order %s already processed; skipping side effects", order_id)
            return ReconciliationResult(order=order, outcome=OUTCOME_SUCCESS, applied=False)

        order = Order.objects.select_related("user").get(pk=order_id)
        try:
            with transaction.atomic():
                cleared = clear_cart(order.user_id)
        except Exception:
            cleared = 0
            logger.exception("Cart clear failed for user=%s after order %s was paid", order.user_id, order.pk)
        failures = decrement_stock_for_lines(order.lines.all())
        queue_payment_confirmation(order)

    logger.info(
        "Order %s paid (reference=%s); cleared %s cart lines, %s stock failures",
        order.pk, reference or order.payment_reference, cleared, len(failures),
    )
    return ReconciliationResult(order=order, outcome=OUTCOME_SUCCESS, applied=True, stock_failures=failures)


def apply_failure(order_id, *, reference=None, payload=None) -> ReconciliationResult:
    changes = {
        "payment_status": PaymentStatus.FAILED,
        "order_status": OrderStatus.CANCELLED,
        "updated_at": timezone.now(),
    }
    changes.update(_gateway_changes(reference, payload))

    # A paid order is never downgraded by a late failure report.
    updated = (
        Order.objects.filter(pk=order_id)
        .exclude(payment_status=PaymentStatus.SUCCESS)
        .update(**changes)
    )
    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    if not updated:
        logger.warning("Ignoring failed payment for order %s: already paid", order_id)
    else:
        logger.info("Order %s payment failed (reference=%s)", order_id, reference)
    return ReconciliationResult(order=order, outcome=OUTCOME_FAILED, applied=bool(updated))


def handle_webhook(raw_body: bytes, signature: str, gateway) -> ReconciliationResult:
    """Authenticate and apply one Paystack webhook delivery."""
    if not gateway.is_valid_signature(raw_body, signature):
        logger.warning("Rejected webhook with invalid signature")
        raise InvalidSignature("Invalid signature")

    try:
        event = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise ValidationError("Invalid JSON")
    if not isinstance(event, dict):
        raise ValidationError("Invalid JSON")

    event_type = str(event.get("event") or "")
    data = event.get("data") or {}
    if not isinstance(data, dict):
        data = {}
    reference = data.get("reference")

    if event_type not in (SUCCESS_EVENT, FAILED_EVENT):
        logger.info("Ignoring webhook event %s (reference=%s)", event_type or "<none>", reference)
        return ReconciliationResult(order=None, outcome=OUTCOME_IGNORED)

    order_id = _order_id(parse_metadata(data.get("metadata")).get("order_id"))
    if order_id is None:
        logger.warning("Webhook %s for reference=%s has no order_id; ignoring", event_type, reference)
        return ReconciliationResult(order=None, outcome=OUTCOME_IGNORED)

    if event_type == SUCCESS_EVENT:
        return apply_success(order_id, reference=reference, payload=data)
    return apply_failure(order_id, reference=reference, payload=data)


def verify_payment(user, reference: str, gateway) -> ReconciliationResult:
    """Ask the gateway for the authoritative status of ``reference`` and apply it.

    Gateway errors (including :class:`GatewayTimeout`) propagate untouched so
    the caller can retry; the order is not modified in that case.
    """
    reference = (reference or "").strip()
    if not reference:
        raise ValidationError("Payment reference is required", field="reference")

    result = gateway.verify(reference)

    orders = Order.objects.filter(user=user)
    order = None
    order_id = _order_id(result["metadata"].get("order_id"))
    if order_id is not None:
        order = orders.filter(pk=order_id).first()
    if order is None:
        order = by_reference(orders, reference).first()
    if order is None:
        raise OrderNotFound("Order not found")

    status = result["status"]
    if status == OUTCOME_SUCCESS:
        outcome = apply_success(order.pk, reference=result["reference"], payload=result)
    elif status == OUTCOME_FAILED:
        outcome = apply_failure(order.pk, reference=result["reference"], payload=result)
    else:
        # abandoned / ongoing / pending: the customer may still complete it
        logger.info("Payment %s for order %s still %s", reference, order.pk, status or "unknown")
        outcome = ReconciliationResult(order=order, outcome=OUTCOME_PENDING)
    outcome.gateway_response = result.get("gateway_response") or ""
    return outcome


def payment_status(user, reference: str) -> dict:
    reference = (reference or "").strip()
    order = by_reference(Order.objects.filter(user=user), reference).first() if reference else None
    if order is None:
        raise OrderNotFound("Order not found")
    return {
        "order_id": order.pk,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
        "total": str(order.total),
        "created_at": order.created_at.isoformat(),
    }


def _order_id(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
