import json
from io import StringIO
from unittest.mock import MagicMock, patch

import requests
from django.core.exceptions import ImproperlyConfigured
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse

from cart.models import CartLine
from catalog.models import Product
from orders.models import OrderStatus, PaymentStatus
from orders.services import create_order, retry_payment
from storefront.errors import GatewayError, GatewayTimeout, PartialFailureWarning
from storefront.testing import (
    TEST_SECRET, FakeGateway, add_line, make_product, make_user, sign, webhook_body,
)

from . import reconciliation
from .paystack import PaystackClient, parse_metadata
from .utils import compute_signature, gen_payment_reference, verify_signature


def _response(status_code=200, body=None):
    resp = MagicMock(status_code=status_code)
    resp.json.return_value = body if body is not None else {}
    resp.text = json.dumps(body or {})
    return resp


class SignatureTests(SimpleTestCase):
    def test_matching_signature(self):
        raw = b'{"event":"charge.success"}'
        self.assertTrue(verify_signature(raw, compute_signature(raw, "s3cret"), "s3cret"))

    def test_signature_is_case_insensitive_hex(self):
        raw = b"{}"
        self.assertTrue(verify_signature(raw, compute_signature(raw, "k").upper(), "k"))

    def test_mismatch(self):
        self.assertFalse(verify_signature(b"{}", "deadbeef", "k"))
        self.assertFalse(verify_signature(b"{}", "", "k"))

    def test_missing_secret_is_a_configuration_error(self):
        with self.assertRaises(ImproperlyConfigured):
            verify_signature(b"{}", "abc", "")

    def test_reference_format(self):
        ref = gen_payment_reference(42)
        self.assertRegex(ref, r"^order_42_\d{13}[0-9a-f]{4}$")
        self.assertNotEqual(ref, gen_payment_reference(42))

    def test_parse_metadata(self):
        self.assertEqual(parse_metadata({"order_id": 1}), {"order_id": 1})
        self.assertEqual(parse_metadata('{"order_id": 2}'), {"order_id": 2})
        self.assertEqual(parse_metadata(""), {})
        self.assertEqual(parse_metadata("[1, 2]"), {})
        self.assertEqual(parse_metadata(None), {})


class PaystackClientTests(SimpleTestCase):
    def setUp(self):
        self.paystack = PaystackClient("sk_live_x", base_url="https://api.paystack.test/", timeout=5)

    @patch("payments.paystack.requests.post")
    def test_initialize(self, post):
        post.return_value = _response(200, {
            "status": True,
            "data": {"authorization_url": "https://checkout/abc", "access_code": "ac", "reference": "order_1_x"},
        })
        data = self.paystack.initialize("a@b.c", 2000000, "order_1_x", "https://shop/verify-payment", {"order_id": 1})

        self.assertEqual(data, {"authorization_url": "https://checkout/abc", "access_code": "ac", "reference": "order_1_x"})
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://api.paystack.test/transaction/initialize")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk_live_x")
        self.assertEqual(kwargs["json"]["amount"], 2000000)
        self.assertEqual(kwargs["json"]["metadata"], {"order_id": 1})
        self.assertEqual(kwargs["timeout"], 5)

    @patch("payments.paystack.requests.post")
    def test_initialize_rejected(self, post):
        post.return_value = _response(401, {"status": False, "message": "Invalid key"})
        with self.assertRaises(GatewayError) as cm:
            self.paystack.initialize("a@b.c", 100, "r", "https://cb", {})
        self.assertIn("PAYSTACK_SECRET_KEY", str(cm.exception))
        self.assertFalse(cm.exception.retryable)

    @patch("payments.paystack.requests.post")
    def test_status_false_is_an_error(self, post):
        post.return_value = _response(200, {"status": False, "message": "Duplicate reference"})
        with self.assertRaises(GatewayError):
            self.paystack.initialize("a@b.c", 100, "r", "https://cb", {})

    @patch("payments.paystack.requests.post", side_effect=requests.Timeout("read timed out"))
    def test_timeout_is_retryable(self, post):
        with self.assertRaises(GatewayTimeout) as cm:
            self.paystack.initialize("a@b.c", 100, "r", "https://cb", {})
        self.assertTrue(cm.exception.retryable)

    @patch("payments.paystack.requests.post", side_effect=requests.ConnectionError("refused"))
    def test_connection_error(self, post):
        with self.assertRaises(GatewayError):
            self.paystack.initialize("a@b.c", 100, "r", "https://cb", {})

    @patch("payments.paystack.requests.get")
    def test_verify(self, get):
        get.return_value = _response(200, {
            "status": True,
            "data": {
                "status": "Success",
                "gateway_response": "Approved",
                "reference": "order_7_1",
                "amount": 2000000,
                "metadata": '{"order_id": 7}',
            },
        })
        data = self.paystack.verify("order_7_1")
        self.assertEqual(get.call_args[0][0], "https://api.paystack.test/transaction/verify/order_7_1")
        self.assertEqual(data["status"], "success")
        self.assertEqual(data["metadata"], {"order_id": 7})
        self.assertEqual(data["gateway_response"], "Approved")

    @patch("payments.paystack.requests.get", side_effect=requests.Timeout("slow"))
    def test_verify_timeout(self, get):
        with self.assertRaises(GatewayTimeout):
            self.paystack.verify("r")

    @patch("payments.paystack.requests.post")
    def test_missing_secret_never_calls_out(self, post):
        with self.assertRaises(GatewayError):
            PaystackClient("").initialize("a@b.c", 100, "r", "https://cb", {})
        post.assert_not_called()

    @override_settings(PAYSTACK_SECRET_KEY="sk_from_settings", PAYSTACK_BASE_URL="https://p.test", PAYSTACK_TIMEOUT=3)
    def test_from_settings(self):
        client = PaystackClient.from_settings()
        self.assertEqual((client.secret_key, client.base_url, client.timeout), ("sk_from_settings", "https://p.test", 3))


class PaidOrderMixin:
    def place_order(self, user=None, quantity=2):
        user = user or self.user
        add_line(user, self.product, quantity)
        result = create_order(
            user, state="Lagos", city="Ikeja", address="1 Allen Avenue",
            email=user.email, gateway=FakeGateway(),
        )
        return result.order, result.payment["reference"]


@override_settings(PAYSTACK_SECRET_KEY=TEST_SECRET)
class VerifyPaymentTests(PaidOrderMixin, TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(stock=5)
        self.order, self.reference = self.place_order()
        self.gateway = FakeGateway()
        patcher = patch("payments.views.get_gateway", return_value=self.gateway)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client.force_login(self.user)

    def _verify(self, reference=None):
        return self.client.post(
            reverse("payments:verify"),
            data=json.dumps({"reference": reference or self.reference}),
            content_type="application/json",
        )

    def _webhook(self):
        raw = webhook_body("charge.success", self.order.pk, self.reference)
        return self.client.post(
            reverse("payments:webhook"), data=raw, content_type="application/json",
            HTTP_X_PAYSTACK_SIGNATURE=sign(raw),
        )

    def test_requires_login(self):
        self.client.logout()
        self.assertEqual(self._verify().status_code, 401)

    def test_missing_reference(self):
        resp = self.client.post(reverse("payments:verify"), data="{}", content_type="application/json")
        self.assertEqual(resp.status_code, 400)

    def test_non_object_body_is_400(self):
        resp = self.client.post(reverse("payments:verify"), data="[]", content_type="application/json")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.gateway.verified, [])

    def test_success(self):
        self.gateway.set_verify_result(self.reference, "success", order_id=self.order.pk)
        resp = self._verify()

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "success")
        self.assertFalse(body["already_processed"])
        self.assertEqual(body["order_id"], self.order.pk)

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.SUCCESS)
        self.assertEqual(self.order.order_status, OrderStatus.PROCESSING)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)
        self.assertFalse(CartLine.objects.filter(user=self.user).exists())

    def test_order_resolved_by_reference_when_metadata_missing(self):
        self.gateway.set_verify_result(self.reference, "success")
        self.assertEqual(self._verify().status_code, 200)
        self.order.refresh_from_db()
        self.assertTrue(self.order.is_paid)

    def test_webhook_then_verify_applies_once(self):
        self._webhook()
        self.gateway.set_verify_result(self.reference, "success", order_id=self.order.pk)

        resp = self._verify()

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["already_processed"])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)

    def test_verify_then_webhook_applies_once(self):
        self.gateway.set_verify_result(self.reference, "success", order_id=self.order.pk)
        self._verify()
        add_line(self.user, self.product, 1)

        resp = self._webhook()

        self.assertEqual(resp.json().get("status"), "already_processed")
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)
        self.assertTrue(CartLine.objects.filter(user=self.user).exists())

    def test_gateway_timeout_leaves_order_untouched(self):
        self.gateway.verify_error = GatewayTimeout("Gateway request timed out")
        resp = self._verify()

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["code"], "gateway_timeout")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)
        self.assertEqual(self.order.order_status, OrderStatus.PENDING)

    def test_failed(self):
        self.gateway.set_verify_result(self.reference, "failed", order_id=self.order.pk)
        resp = self._verify()

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["gateway_response"], "Declined")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.FAILED)
        self.assertEqual(self.order.order_status, OrderStatus.CANCELLED)

    def test_abandoned_is_still_pending(self):
        self.gateway.set_verify_result(self.reference, "abandoned", order_id=self.order.pk)
        resp = self._verify()

        self.assertEqual(resp.status_code, 202)
        self.assertEqual(resp.json()["status"], "pending")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)

    def test_other_users_order_is_not_found(self):
        self.gateway.set_verify_result(self.reference, "success", order_id=self.order.pk)
        self.client.force_login(make_user("bola"))

        self.assertEqual(self._verify().status_code, 404)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)

    def test_status_query(self):
        resp = self.client.get(reverse("payments:status", kwargs={"reference": self.reference}))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["order_id"], self.order.pk)
        self.assertEqual(resp.json()["payment_status"], "pending")
        self.assertEqual(resp.json()["total"], "20000.00")

    def test_paying_an_earlier_checkout_keeps_latest_reference(self):
        latest = retry_payment(self.user, self.order.pk, email="ada@example.com", gateway=FakeGateway())
        new_reference = latest.payment["reference"]
        self.assertNotEqual(new_reference, self.reference)

        # the customer completes the first checkout page anyway
        self._webhook()

        self.order.refresh_from_db()
        self.assertTrue(self.order.is_paid)
        self.assertEqual(self.order.payment_reference, new_reference)
        self.assertEqual(self.order.gateway_meta["reference"], self.reference)
        for ref in (new_reference, self.reference):
            resp = self.client.get(reverse("payments:status", kwargs={"reference": ref}))
            self.assertEqual(resp.status_code, 200, ref)
            self.assertEqual(resp.json()["payment_status"], "success")

    def test_status_query_unknown_reference(self):
        resp = self.client.get(reverse("payments:status", kwargs={"reference": "order_0_nope"}))
        self.assertEqual(resp.status_code, 404)


class InventoryAfterPaymentTests(PaidOrderMixin, TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(stock=3)

    def test_missing_product_does_not_undo_payment(self):
        extra = make_product(name="Ginger Root Tea", stock=4)
        add_line(self.user, extra, 1)
        order, reference = self.place_order()
        Product.objects.filter(pk=self.product.pk).delete()

        with self.assertLogs("catalog.services", level="WARNING") as logs:
            result = reconciliation.apply_success(order.pk, reference=reference)

        self.assertTrue(result.applied)
        self.assertEqual([pid for pid, _ in result.stock_failures], [self.product.pk])
        self.assertIn("PartialFailureWarning", logs.output[0])
        self.assertIs(logs.records[0].category, PartialFailureWarning)
        order.refresh_from_db()
        self.assertEqual(order.payment_status, PaymentStatus.SUCCESS)
        self.assertEqual(order.lines.count(), 2)
        extra.refresh_from_db()
        self.assertEqual(extra.stock, 3)

    def test_concurrent_checkouts_can_oversell(self):
        # Stock is checked at order time but only consumed on payment.
        first, _ = self.place_order(quantity=2)
        second, _ = self.place_order(user=make_user("bola"), quantity=2)

        reconciliation.apply_success(first.pk)
        reconciliation.apply_success(second.pk)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, -1)


class ReconcilePendingOrdersCommandTests(PaidOrderMixin, TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(stock=10)
        self.paid, self.paid_ref = self.place_order(quantity=1)
        self.declined, self.declined_ref = self.place_order(user=make_user("bola"), quantity=1)
        self.gateway = FakeGateway()
        patcher = patch(
            "payments.management.commands.reconcile_pending_orders.get_gateway",
            return_value=self.gateway,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_applies_gateway_outcomes(self):
        self.gateway.set_verify_result(self.paid_ref, "success", order_id=self.paid.pk)
        self.gateway.set_verify_result(self.declined_ref, "failed", order_id=self.declined.pk)
        out = StringIO()

        call_command("reconcile_pending_orders", stdout=out)

        self.paid.refresh_from_db()
        self.declined.refresh_from_db()
        self.assertEqual(self.paid.payment_status, PaymentStatus.SUCCESS)
        self.assertEqual(self.declined.payment_status, PaymentStatus.FAILED)
        self.assertIn("Checked 2, updated 2 orders.", out.getvalue())

    def test_gateway_errors_are_reported_per_order(self):
        self.gateway.verify_error = GatewayError("Verify transaction failed: Gateway error 500.")
        out = StringIO()

        call_command("reconcile_pending_orders", stdout=out)

        self.assertIn("Gateway error 500", out.getvalue())
        self.paid.refresh_from_db()
        self.assertEqual(self.paid.payment_status, PaymentStatus.PENDING)

    def test_nothing_pending(self):
        reconciliation.apply_success(self.paid.pk)
        reconciliation.apply_failure(self.declined.pk)
        out = StringIO()
        call_command("reconcile_pending_orders", stdout=out)
        self.assertIn("No pending orders", out.getvalue())
        self.assertEqual(self.gateway.verified, [])
