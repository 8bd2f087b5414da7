import logging

from storefront.errors import InsufficientStock, NotFoundError, ProductNotFound, ValidationError
from catalog.models import Product

from .models import CartLine

logger = logging.getLogger(__name__)


def cart_lines(user):
    return list(CartLine.objects.filter(user=user).select_related("product"))


def add_to_cart(user, product_id, quantity=1) -> CartLine:
    """Upsert a cart line; the quantity replaces any existing one."""
    if not product_id:
        raise ValidationError("Product ID is required", field="product_id")
    quantity = _parse_quantity(quantity)
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", field="quantity")

    product = Product.objects.filter(pk=product_id).first()
    if product is None:
        raise ProductNotFound("Product not found")
    if product.stock < quantity:
        raise InsufficientStock("Insufficient stock", product_id=product.pk)

    line, _ = CartLine.objects.update_or_create(
        user=user, product=product, defaults={"quantity": quantity},
    )
    return line


def update_quantity(user, line_id, quantity) -> CartLine | None:
    """Set a line's quantity; zero removes the line and returns None."""
    quantity = _parse_quantity(quantity)
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative", field="quantity")

    line = CartLine.objects.select_related("product").filter(pk=line_id, user=user).first()
    if line is None:
        raise NotFoundError("Cart item not found")
    if quantity == 0:
        line.delete()
        return None
    if line.product.stock < quantity:
        raise InsufficientStock("Insufficient stock", product_id=line.product_id)
    line.quantity = quantity
    line.save(update_fields=["quantity"])
    return line


def remove_line(user, line_id) -> None:
    CartLine.objects.filter(pk=line_id, user=user).delete()


def clear_cart(user_id) -> int:
    deleted, _ = CartLine.objects.filter(user_id=user_id).delete()
    return deleted


def _parse_quantity(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be an integer", field="quantity")
