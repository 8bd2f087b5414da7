"""Order pricing: subtotal, flat-rate delivery tiers and percentage discounts.

Everything here is pure. Amounts are ``Decimal`` naira values quantized to
kobo (2 dp, ROUND_HALF_UP); the gateway receives integer kobo via
:func:`to_minor_units`.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

TWO_PLACES = Decimal("0.01")

METRO_STATE = "lagos"
NEARBY_STATES = ("ogun", "oyo", "osun", "ondo", "ekiti", "edo")

METRO_FEE = Decimal("10000")
NEARBY_FEE = Decimal("23000")
STANDARD_FEE = Decimal("27000")
DEFAULT_FEE = Decimal("9000")  # no state given at all

NIGERIAN_STATES = frozenset({
    "abia", "adamawa", "akwa ibom", "anambra", "bauchi", "bayelsa",
    "benue", "borno", "cross river", "delta", "ebonyi", "edo",
    "ekiti", "enugu", "gombe", "imo", "jigawa", "kaduna",
    "kano", "katsina", "kebbi", "kogi", "kwara", "lagos",
    "nasarawa", "niger", "ogun", "ondo", "osun", "oyo",
    "plateau", "rivers", "sokoto", "taraba", "yobe", "zamfara",
    "fct", "abuja",
})


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    delivery_fee: Decimal
    discount_amount: Decimal
    total: Decimal


def quantize(amount) -> Decimal:
    return Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def normalize_state(state: str | None) -> str:
    return (state or "").strip().lower()


def is_valid_state(state: str | None) -> bool:
    return normalize_state(state) in NIGERIAN_STATES


def calculate_delivery_fee(state: str | None) -> Decimal:
    s = normalize_state(state)
    if not s:
        return DEFAULT_FEE
    if s == METRO_STATE:
        return METRO_FEE
    if s in NEARBY_STATES:
        return NEARBY_FEE
    return STANDARD_FEE


def delivery_fee_label(state: str | None) -> str:
    fee = calculate_delivery_fee(state)
    s = normalize_state(state)
    if s == METRO_STATE:
        name = "Lagos Delivery"
    elif s in NEARBY_STATES:
        name = "Nearby States Delivery"
    else:
        name = "Standard Delivery"
    return f"{name} - ₦{fee:,.0f}"


def _price_and_quantity(item):
    if isinstance(item, dict):
        price = item.get("unit_price", item.get("price"))
        return Decimal(str(price)), int(item["quantity"])
    price = getattr(item, "unit_price", None)
    if price is None:
        price = item.price
    return Decimal(str(price)), int(item.quantity)


def _discount_percentage(discount, today: date | None) -> Decimal:
    if not discount:
        return Decimal("0")
    if isinstance(discount, dict):
        pct, valid_until = discount.get("percentage"), discount.get("valid_until")
    else:
        pct, valid_until = discount.percentage, getattr(discount, "valid_until", None)
    if not pct:
        return Decimal("0")
    if valid_until is not None and valid_until < (today or date.today()):
        return Decimal("0")
    return Decimal(str(pct))


def calculate_order_totals(items, state: str | None, discount=None, today: date | None = None) -> OrderTotals:
    """Price a list of ``{unit_price|price, quantity}`` items for a destination.

    ``discount`` is an object or mapping with ``percentage`` and optionally
    ``valid_until``; an expired discount contributes nothing. Each field is
    rounded on its own and the total is built from the rounded parts, so
    ``total == subtotal + delivery_fee - discount_amount`` holds exactly.
    """
    subtotal = sum((p * q for p, q in map(_price_and_quantity, items)), Decimal("0"))
    subtotal = quantize(subtotal)
    delivery_fee = quantize(calculate_delivery_fee(state))
    discount_amount = quantize(subtotal * _discount_percentage(discount, today) / Decimal("100"))
    total = subtotal + delivery_fee - discount_amount
    return OrderTotals(subtotal, delivery_fee, discount_amount, total)


def to_minor_units(amount) -> int:
    """Naira -> kobo."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
