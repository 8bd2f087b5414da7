"""Inventory ledger: the only place stock is consumed."""
import logging

from django.db import transaction
from django.db.models import F

from storefront.errors import PartialFailureWarning, ProductNotFound, ValidationError

from .models import Discount, Product

logger = logging.getLogger(__name__)


def decrement_stock(product_id: int, quantity: int) -> int:
    """Atomically subtract ``quantity`` from a product's stock.

    Returns the number of rows touched; raises ``ProductNotFound`` when the
    product no longer exists. The decrement is not floored at zero.
    """
    updated = Product.objects.filter(pk=product_id).update(stock=F("stock") - quantity)
    if not updated:
        raise ProductNotFound(f"Product {product_id} not found")
    return updated


def decrement_stock_for_lines(lines) -> list:
    """Decrement stock for every order line independently.

    A failure on one line is logged and skipped so the remaining lines are
    still consumed. Returns the list of ``(product_id, error)`` pairs that
    failed.
    """
    failures = []
    for line in lines:
        try:
            with transaction.atomic():
                decrement_stock(line.product_id, line.quantity)
        except Exception as e:
            logger.warning(
                "%s: stock decrement failed for product=%s qty=%s: %s",
                PartialFailureWarning.__name__, line.product_id, line.quantity, e,
                extra={"category": PartialFailureWarning},
            )
            failures.append((line.product_id, e))
    return failures


def resolve_discount(code: str | None) -> Discount | None:
    """Look up a discount by code; unknown codes are rejected, expired ones kept."""
    code = (code or "").strip()
    if not code:
        return None
    discount = Discount.objects.filter(code__iexact=code).first()
    if discount is None:
        raise ValidationError("Invalid discount code", field="discount_code")
    return discount
