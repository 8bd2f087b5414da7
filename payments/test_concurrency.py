import threading

from django.db import connection
from django.test import TransactionTestCase, override_settings

from cart.models import CartLine
from orders.models import Order, OrderStatus, PaymentStatus
from orders.services import create_order, set_order_status
from storefront.errors import ConflictError
from storefront.testing import (
    TEST_SECRET, FakeGateway, add_line, make_product, make_user, sign, webhook_body,
)

from . import reconciliation


@override_settings(PAYSTACK_SECRET_KEY=TEST_SECRET, NOTIFICATIONS_RUN_INLINE=True)
class ConcurrentReconciliationTests(TransactionTestCase):
    """Webhook, manual verify and staff overrides hitting one order at once."""

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

    def _race(self, *calls):
        barrier = threading.Barrier(len(calls))
        results = [None] * len(calls)

        def run(i, fn):
            try:
                barrier.wait(timeout=10)
                results[i] = fn()
            except Exception as e:
                results[i] = e
            finally:
                connection.close()

        threads = [threading.Thread(target=run, args=(i, fn)) for i, fn in enumerate(calls)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)
            self.assertFalse(t.is_alive())
        return results

    def test_two_success_reports_apply_once(self):
        results = self._race(
            lambda: reconciliation.apply_success(self.order.pk, reference=self.reference),
            lambda: reconciliation.apply_success(self.order.pk, reference=self.reference),
        )

        for r in results:
            self.assertIsInstance(r, reconciliation.ReconciliationResult)
        self.assertEqual(sorted(r.applied for r in results), [False, True])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)
        self.assertFalse(CartLine.objects.filter(user=self.user).exists())

    def test_webhook_and_manual_verify_race(self):
        raw = webhook_body("charge.success", self.order.pk, self.reference)
        verifier = FakeGateway()
        verifier.set_verify_result(self.reference, "success", order_id=self.order.pk)

        results = self._race(
            lambda: reconciliation.handle_webhook(raw, sign(raw), FakeGateway()),
            lambda: reconciliation.verify_payment(self.user, self.reference, verifier),
        )

        for r in results:
            self.assertIsInstance(r, reconciliation.ReconciliationResult)
        self.assertEqual(sum(r.applied for r in results), 1)
        self.assertEqual(sum(r.already_processed for r in results), 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)

    def test_staff_cancel_racing_payment_never_cancels_a_paid_order(self):
        results = self._race(
            lambda: reconciliation.apply_success(self.order.pk, reference=self.reference),
            lambda: set_order_status(self.order.pk, OrderStatus.CANCELLED),
        )

        paid, cancelled = results
        self.assertIsInstance(paid, reconciliation.ReconciliationResult)
        self.assertTrue(paid.applied)
        # Either the cancel lost (409) or it ran first and the payment superseded it.
        self.assertTrue(isinstance(cancelled, (ConflictError, Order)), cancelled)

        order = Order.objects.get(pk=self.order.pk)
        self.assertEqual(order.payment_status, PaymentStatus.SUCCESS)
        self.assertEqual(order.order_status, OrderStatus.PROCESSING)
