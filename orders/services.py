import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from cart.services import cart_lines
from catalog.services import resolve_discount
from payments.utils import gen_payment_reference
from storefront.errors import (
    ConflictError, DuplicatePayment, EmptyCart, GatewayError, InsufficientStock,
    InvalidRegion, OrderNotFound, PaymentInitializationFailed, ValidationError,
)

from .emails import queue_order_confirmation
from .models import Order, OrderLine, OrderStatus, PaymentStatus
from .pricing import calculate_order_totals, is_valid_state, to_minor_units

logger = logging.getLogger(__name__)

ADMIN_ORDER_STATUSES = (
    OrderStatus.PENDING, OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED,
)


@dataclass
class CheckoutResult:
    order: Order
    payment: dict


def create_order(user, *, state, city, address, email, gateway, phone=None, discount_code=None) -> CheckoutResult:
    """Turn the user's cart into a priced order and open a Paystack transaction.

    1. Validates the destination and contact email
    2. Re-checks stock for every cart line (point in time, nothing reserved)
    3. Snapshots the lines and prices them
    4. Persists the order as pending/pending and queues the confirmation email
    5. Initializes the payment and stores the gateway reference

    If step 5 fails the order is kept with ``order_status=payment_failed`` so
    the customer can retry, and :class:`PaymentInitializationFailed` is raised
    with the order id.
    """
    state = (state or "").strip()
    city = (city or "").strip()
    address = (address or "").strip()
    if not (state and city and address):
        raise ValidationError("Missing required fields: state, city, and address are required")
    if not email:
        raise ValidationError("Email is required for payment processing", field="email")
    if not is_valid_state(state):
        raise InvalidRegion("Invalid Nigerian state", state=state)

    lines = cart_lines(user)
    if not lines:
        raise EmptyCart("Cart is empty")

    # Two concurrent checkouts can both pass this; stock is only consumed on payment.
    for line in lines:
        if line.product.stock < line.quantity:
            raise InsufficientStock(
                f"Insufficient stock for {line.product.name}",
                product_id=line.product_id, product_name=line.product.name,
            )

    discount = resolve_discount(discount_code)

    snapshot = [
        {
            "product_id": line.product_id,
            "product_name": line.product.name,
            "quantity": line.quantity,
            "unit_price": line.product.price,
        }
        for line in lines
    ]
    totals = calculate_order_totals(snapshot, state, discount, today=timezone.localdate())

    with transaction.atomic():
        order = Order.objects.create(
            user=user,
            subtotal=totals.subtotal,
            delivery_fee=totals.delivery_fee,
            discount_code=(discount.code if discount else None),
            discount_amount=totals.discount_amount,
            total=totals.total,
            state=state,
            city=city,
            address=address,
            phone=phone or None,
            email=email,
            payment_status=PaymentStatus.PENDING,
            order_status=OrderStatus.PENDING,
        )
        OrderLine.objects.bulk_create([
            OrderLine(order=order, position=i, **item) for i, item in enumerate(snapshot)
        ])

    logger.info("Order %s created for user=%s total=%s", order.pk, user.pk, order.total)
    try:
        queue_order_confirmation(order, email)
    except Exception:
        logger.exception("Could not queue confirmation email for order %s", order.pk)

    payment = initialize_payment(order, email=email, gateway=gateway)
    return CheckoutResult(order=order, payment=payment)


def retry_payment(user, order_id, *, email, gateway) -> CheckoutResult:
    if not email:
        raise ValidationError("Email is required", field="email")
    order = get_order(user, order_id)
    if order.is_paid:
        raise DuplicatePayment("Order already paid", order_id=order.pk)
    payment = initialize_payment(order, email=email, gateway=gateway)
    return CheckoutResult(order=order, payment=payment)


def initialize_payment(order: Order, *, email: str, gateway) -> dict:
    """Open a gateway transaction for ``order.total`` under a fresh reference."""
    reference = gen_payment_reference(order.pk)
    metadata = {
        "order_id": order.pk,
        "user_id": order.user_id,
        "custom_fields": [
            {"display_name": "Order ID", "variable_name": "order_id", "value": order.pk},
        ],
    }
    callback_url = f"{settings.FRONTEND_URL.rstrip('/')}/verify-payment"
    try:
        payment = gateway.initialize(email, to_minor_units(order.total), reference, callback_url, metadata)
    except GatewayError as e:
        logger.error("Paystack initialization failed for order=%s: %s", order.pk, e)
        Order.objects.filter(pk=order.pk).exclude(payment_status=PaymentStatus.SUCCESS).update(
            order_status=OrderStatus.PAYMENT_FAILED, updated_at=timezone.now(),
        )
        order.refresh_from_db()
        raise PaymentInitializationFailed(
            "Order created but payment initialization failed",
            order_id=order.pk, details=e.extra.get("details"),
        ) from e

    now = timezone.now()
    Order.objects.filter(pk=order.pk).exclude(payment_status=PaymentStatus.SUCCESS).update(
        payment_reference=payment["reference"], email=email, updated_at=now,
    )
    # A previously failed attempt goes back to awaiting payment.
    Order.objects.filter(pk=order.pk, order_status=OrderStatus.PAYMENT_FAILED).update(
        order_status=OrderStatus.PENDING, updated_at=now,
    )
    Order.objects.filter(pk=order.pk, payment_status=PaymentStatus.FAILED).update(
        payment_status=PaymentStatus.PENDING, order_status=OrderStatus.PENDING, updated_at=now,
    )
    order.refresh_from_db()
    logger.info("Payment initialized for order=%s reference=%s", order.pk, payment["reference"])
    return payment


def get_order(user, order_id) -> Order:
    order = Order.objects.filter(pk=order_id, user=user).prefetch_related("lines").first()
    if order is None:
        raise OrderNotFound("Order not found")
    return order


def list_orders(user, page=1, limit=10):
    try:
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), 100)
    except (TypeError, ValueError):
        page, limit = 1, 10
    qs = Order.objects.filter(user=user).prefetch_related("lines")
    total = qs.count()
    start = (page - 1) * limit
    orders = list(qs[start:start + limit])
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": (total + limit - 1) // limit,
    }
    return orders, pagination


def set_order_status(order_id, order_status: str) -> Order:
    """Staff override of the fulfilment status."""
    if order_status not in ADMIN_ORDER_STATUSES:
        raise ValidationError("Invalid order status", order_status=order_status)
    qs = Order.objects.filter(pk=order_id)
    if order_status == OrderStatus.CANCELLED:
        # checked in the same UPDATE so a payment landing meanwhile wins
        qs = qs.exclude(payment_status=PaymentStatus.SUCCESS)
    updated = qs.update(order_status=order_status, updated_at=timezone.now())

    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        raise OrderNotFound("Order not found")
    if not updated:
        raise ConflictError("A paid order cannot be cancelled", order_id=order.pk)
    logger.info("Order %s status set to %s by admin", order.pk, order_status)
    return order
