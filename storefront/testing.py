"""Shared fixtures for the app test suites."""
import json
from decimal import Decimal

from django.contrib.auth import get_user_model

from cart.models import CartLine
from catalog.models import Category, Product
from payments.paystack import PaystackClient
from payments.utils import compute_signature

TEST_SECRET = "sk_test_secret"

User = get_user_model()


def make_user(username="ada", email=None, **extra):
    return User.objects.create_user(
        username=username, email=email or f"{username}@example.com", password="pass12345", **extra
    )


def make_product(name="Moringa Tea", price="5000.00", stock=10, category="Tea Range"):
    cat, _ = Category.objects.get_or_create(name=category)
    return Product.objects.create(name=name, price=Decimal(price), stock=stock, category=cat)


def add_line(user, product, quantity=1):
    return CartLine.objects.create(user=user, product=product, quantity=quantity)


def sign(raw_body: bytes, secret: str = TEST_SECRET) -> str:
    return compute_signature(raw_body, secret)


def webhook_body(event, order_id, reference, status=None, amount=2000000) -> bytes:
    metadata = {"order_id": order_id, "user_id": 1} if order_id is not None else {}
    return json.dumps({
        "event": event,
        "data": {
            "reference": reference,
            "status": status or ("success" if event == "charge.success" else "failed"),
            "amount": amount,
            "metadata": metadata,
        },
    }).encode("utf-8")


class FakeGateway(PaystackClient):
    """Records calls instead of talking to Paystack; signature checks are real."""

    def __init__(self, secret_key=TEST_SECRET, initialize_error=None, verify_error=None):
        super().__init__(secret_key=secret_key, base_url="https://paystack.test")
        self.initialize_error = initialize_error
        self.verify_error = verify_error
        self.initialized = []
        self.verified = []
        self.verify_results = {}

    def initialize(self, email, amount_minor_units, reference, callback_url, metadata):
        self.initialized.append({
            "email": email,
            "amount": amount_minor_units,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata,
        })
        if self.initialize_error is not None:
            raise self.initialize_error
        return {
            "authorization_url": f"https://checkout.paystack.test/{reference}",
            "access_code": f"ac_{len(self.initialized)}",
            "reference": reference,
        }

    def set_verify_result(self, reference, status, order_id=None, gateway_response=None):
        self.verify_results[reference] = {
            "status": status,
            "gateway_response": gateway_response or ("Successful" if status == "success" else "Declined"),
            "metadata": {"order_id": order_id} if order_id is not None else {},
            "reference": reference,
            "amount": None,
        }

    def verify(self, reference):
        self.verified.append(reference)
        if self.verify_error is not None:
            raise self.verify_error
        return dict(self.verify_results[reference])
