import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from storefront.tasks import dispatch_after_commit

logger = logging.getLogger(__name__)

TEMPLATE = "emails/payment_confirmation.txt"


def _fail_silently() -> bool:
    return getattr(settings, "EMAIL_FAIL_SILENTLY", True)


def staff_recipients() -> list:
    """Addresses that get a copy of every payment; ``PAYMENTS_ADMIN_EMAILS`` is comma separated."""
    raw = getattr(settings, "PAYMENTS_ADMIN_EMAILS", "") or getattr(settings, "EMAIL_HOST_USER", "")
    out = []
    for addr in (a.strip() for a in (raw or "").split(",")):
        if addr and addr.lower() not in {o.lower() for o in out}:
            out.append(addr)
    return out


def _send(subject: str, context: dict, to: list) -> None:
    from_email = getattr(settings, "DEFAULT_FROM_EMAIL", None)
    msg = EmailMultiAlternatives(subject, render_to_string(TEMPLATE, context), from_email, to)
    msg.send(fail_silently=_fail_silently())


def send_payment_confirmation(*, context: dict, recipient: str) -> None:
    """Receipt to the customer, then a copy to staff. One failing does not stop the other."""
    order_id, total = context["order_id"], context["total"]
    if recipient:
        try:
            _send(f"Payment received: order #{order_id} - NGN {total}", context, [recipient])
        except Exception:
            logger.exception("Payment receipt for order %s to %s failed", order_id, recipient)

    staff = staff_recipients()
    if staff:
        try:
            _send(
                f"New payment: order #{order_id} - NGN {total} ({context['payment_reference']})",
                {**context, "customer_name": "team"}, staff,
            )
        except Exception:
            logger.exception("Staff payment notification for order %s failed", order_id)


def queue_payment_confirmation(order) -> None:
    """Email the receipt once the success transition has committed."""
    user = order.user
    context = {
        "order_id": order.pk,
        "customer_name": user.get_full_name() or user.get_username(),
        "payment_reference": order.payment_reference,
        "total": order.total,
        "order_status": order.order_status,
    }
    dispatch_after_commit(send_payment_confirmation, context=context, recipient=order.email or user.email)
