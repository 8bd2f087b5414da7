import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from storefront.tasks import dispatch_after_commit

logger = logging.getLogger(__name__)


def _fail_silently() -> bool:
    return getattr(settings, "EMAIL_FAIL_SILENTLY", True)


def order_email_context(order, customer_name: str = "Customer") -> dict:
    """Plain snapshot of an order so the email can be built off the request thread."""
    return {
        "order_id": order.pk,
        "customer_name": customer_name,
        "created_at": order.created_at,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
        "address": order.address,
        "city": order.city,
        "state": order.state,
        "phone": order.phone,
        "items": [
            {"product_name": l.product_name, "quantity": l.quantity, "unit_price": l.unit_price}
            for l in order.lines.all()
        ],
        "subtotal": order.subtotal,
        "delivery_fee": order.delivery_fee,
        "discount_amount": order.discount_amount,
        "total": order.total,
        "payment_reference": order.payment_reference,
    }


def send_order_confirmation(*, context: dict, recipient: str) -> None:
    if not recipient:
        return
    from_email = getattr(settings, "DEFAULT_FROM_EMAIL", None)
    subject = f"Order Confirmation - #{context['order_id']}"
    text = render_to_string("emails/order_confirmation.txt", context)
    msg = EmailMultiAlternatives(subject, text, from_email, [recipient])
    msg.send(fail_silently=_fail_silently())
    logger.info("Order confirmation sent for order=%s to %s", context["order_id"], recipient)


def queue_order_confirmation(order, recipient: str) -> None:
    """Send the confirmation after commit without holding up the checkout."""
    name = order.user.get_full_name() or order.user.get_username() or "Customer"
    context = order_email_context(order, customer_name=name)
    dispatch_after_commit(send_order_confirmation, context=context, recipient=recipient)
