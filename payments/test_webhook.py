from django.core import mail
from django.test import TestCase, override_settings
from django.urls import reverse

from cart.models import CartLine
from orders.models import OrderStatus, PaymentStatus
from orders.services import create_order
from storefront.testing import (
    TEST_SECRET, FakeGateway, add_line, make_product, make_user, sign, webhook_body,
)


@override_settings(PAYSTACK_SECRET_KEY=TEST_SECRET, NOTIFICATIONS_RUN_INLINE=True)
class PaystackWebhookTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(stock=5)
        add_line(self.user, self.product, 2)
        result = create_order(
            self.user, state="Lagos", city="Ikeja", address="1 Allen Avenue",
            email="ada@example.com", gateway=FakeGateway(),
        )
        self.order = result.order
        self.reference = result.payment["reference"]

    def _post(self, raw: bytes, signature=None, header="HTTP_X_PAYSTACK_SIGNATURE"):
        extra = {}
        if signature is not None:
            extra[header] = signature
        return self.client.post(
            reverse("payments:webhook"), data=raw, content_type="application/json", **extra
        )

    def _success_body(self, order_id=None):
        return webhook_body("charge.success", order_id or self.order.pk, self.reference)

    def test_success_marks_order_paid_and_consumes_stock(self):
        raw = self._success_body()
        resp = self._post(raw, sign(raw))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"received": True})
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.SUCCESS)
        self.assertEqual(self.order.order_status, OrderStatus.PROCESSING)
        self.assertIsNotNone(self.order.paid_at)
        self.assertEqual(self.order.payment_reference, self.reference)
        self.assertEqual(self.order.gateway_meta["reference"], self.reference)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)
        self.assertFalse(CartLine.objects.filter(user=self.user).exists())

    def test_alternate_signature_header_is_accepted(self):
        raw = self._success_body()
        resp = self._post(raw, sign(raw), header="HTTP_X_SIGNATURE")
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertTrue(self.order.is_paid)

    def test_receipt_is_emailed_after_commit(self):
        raw = self._success_body()
        with self.captureOnCommitCallbacks(execute=True):
            self._post(raw, sign(raw))
        receipts = [m for m in mail.outbox if m.to == ["ada@example.com"]]
        self.assertEqual(len(receipts), 1)
        self.assertIn(f"#{self.order.pk}", receipts[0].subject)
        self.assertIn(self.reference, receipts[0].body)

    @override_settings(PAYMENTS_ADMIN_EMAILS="ops@healthexcellence.shop, OPS@healthexcellence.shop")
    def test_staff_get_one_copy(self):
        raw = self._success_body()
        with self.captureOnCommitCallbacks(execute=True):
            self._post(raw, sign(raw))
        staff = [m for m in mail.outbox if m.to == ["ops@healthexcellence.shop"]]
        self.assertEqual(len(staff), 1)
        self.assertIn(self.reference, staff[0].subject)

    def test_duplicate_delivery_is_applied_once(self):
        raw = self._success_body()
        self._post(raw, sign(raw))
        # the customer starts a new cart before the retry arrives
        add_line(self.user, self.product, 1)

        resp = self._post(raw, sign(raw))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"received": True, "status": "already_processed"})
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)
        self.assertEqual(CartLine.objects.filter(user=self.user).count(), 1)

    def test_duplicate_delivery_sends_one_receipt(self):
        raw = self._success_body()
        with self.captureOnCommitCallbacks(execute=True):
            self._post(raw, sign(raw))
            self._post(raw, sign(raw))
        self.assertEqual(len([m for m in mail.outbox if m.to == ["ada@example.com"]]), 1)

    def test_tampered_body_is_rejected(self):
        raw = self._success_body()
        signature = sign(raw)
        tampered = raw.replace(b'"amount": 2000000', b'"amount": 100')
        self.assertNotEqual(raw, tampered)

        resp = self._post(tampered, signature)

        self.assertEqual(resp.status_code, 401)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 5)

    def test_signature_with_wrong_secret_is_rejected(self):
        raw = self._success_body()
        resp = self._post(raw, sign(raw, "sk_test_other"))
        self.assertEqual(resp.status_code, 401)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)

    def test_missing_signature_is_rejected(self):
        resp = self._post(self._success_body())
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["code"], "invalid_signature")

    def test_body_is_not_reserialized_before_verification(self):
        # Same JSON document, different bytes: only the signed bytes verify.
        raw = self._success_body()
        spaced = raw.replace(b": ", b":  ")
        resp = self._post(spaced, sign(raw))
        self.assertEqual(resp.status_code, 401)

    def test_invalid_json_with_valid_signature(self):
        raw = b"not-json"
        resp = self._post(raw, sign(raw))
        self.assertEqual(resp.status_code, 400)

    def test_event_without_order_id_is_acknowledged(self):
        raw = webhook_body("charge.success", None, self.reference)
        with self.assertLogs("payments.reconciliation", level="WARNING"):
            resp = self._post(raw, sign(raw))
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)

    def test_unknown_order_is_404(self):
        raw = self._success_body(order_id=999999)
        resp = self._post(raw, sign(raw))
        self.assertEqual(resp.status_code, 404)

    def test_failed_charge_cancels_order(self):
        raw = webhook_body("charge.failed", self.order.pk, self.reference)
        resp = self._post(raw, sign(raw))

        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.FAILED)
        self.assertEqual(self.order.order_status, OrderStatus.CANCELLED)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 5)
        self.assertTrue(CartLine.objects.filter(user=self.user).exists())

    def test_failure_after_success_does_not_downgrade(self):
        ok = self._success_body()
        self._post(ok, sign(ok))

        failed = webhook_body("charge.failed", self.order.pk, self.reference)
        resp = self._post(failed, sign(failed))

        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.SUCCESS)
        self.assertEqual(self.order.order_status, OrderStatus.PROCESSING)

    def test_other_events_are_ignored(self):
        raw = webhook_body("transfer.success", self.order.pk, self.reference, status="success")
        resp = self._post(raw, sign(raw))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"received": True})
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, PaymentStatus.PENDING)

    def test_get_not_allowed(self):
        self.assertEqual(self.client.get(reverse("payments:webhook")).status_code, 405)

