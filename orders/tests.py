import json
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

from django.core import mail
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from cart.models import CartLine
from catalog.models import Discount
from payments import reconciliation
from storefront.errors import (
    DuplicatePayment, EmptyCart, GatewayError, GatewayTimeout, InsufficientStock,
    InvalidRegion, OrderNotFound, PaymentInitializationFailed, ValidationError,
)
from storefront.testing import FakeGateway, add_line, make_product, make_user

from . import pricing, services
from .admin import OrderAdmin
from .models import Order, OrderStatus, PaymentStatus


class DeliveryFeeTests(SimpleTestCase):
    def test_lagos_is_metro_tier(self):
        self.assertEqual(pricing.calculate_delivery_fee("Lagos"), Decimal("10000"))

    def test_region_is_normalized(self):
        self.assertEqual(
            pricing.calculate_delivery_fee("Lagos"),
            pricing.calculate_delivery_fee("  lagos  "),
        )
        self.assertEqual(pricing.calculate_delivery_fee(" OGUN"), Decimal("23000"))

    def test_nearby_states(self):
        for state in ("ogun", "oyo", "osun", "ondo", "ekiti", "edo"):
            self.assertEqual(pricing.calculate_delivery_fee(state), Decimal("23000"), state)

    def test_other_regions_use_standard_fee(self):
        self.assertEqual(pricing.calculate_delivery_fee("kano"), Decimal("27000"))
        self.assertEqual(pricing.calculate_delivery_fee("unknown-state"), Decimal("27000"))

    def test_missing_region_uses_default_fee(self):
        self.assertEqual(pricing.calculate_delivery_fee(""), Decimal("9000"))
        self.assertEqual(pricing.calculate_delivery_fee(None), Decimal("9000"))
        self.assertEqual(pricing.calculate_delivery_fee("   "), Decimal("9000"))

    def test_labels(self):
        self.assertEqual(pricing.delivery_fee_label("lagos"), "Lagos Delivery - ₦10,000")
        self.assertEqual(pricing.delivery_fee_label("Oyo"), "Nearby States Delivery - ₦23,000")
        self.assertEqual(pricing.delivery_fee_label("kano"), "Standard Delivery - ₦27,000")

    def test_state_validation(self):
        self.assertTrue(pricing.is_valid_state("Akwa Ibom "))
        self.assertTrue(pricing.is_valid_state("FCT"))
        self.assertFalse(pricing.is_valid_state("unknown-state"))
        self.assertFalse(pricing.is_valid_state(None))


class OrderTotalsTests(SimpleTestCase):
    def test_lagos_scenario(self):
        totals = pricing.calculate_order_totals([{"price": "5000", "quantity": 2}], "lagos")
        self.assertEqual(totals.subtotal, Decimal("10000.00"))
        self.assertEqual(totals.delivery_fee, Decimal("10000.00"))
        self.assertEqual(totals.discount_amount, Decimal("0.00"))
        self.assertEqual(totals.total, Decimal("20000.00"))

    def test_ogun_scenario(self):
        totals = pricing.calculate_order_totals([{"price": "5000", "quantity": 2}], "ogun")
        self.assertEqual(totals.delivery_fee, Decimal("23000.00"))
        self.assertEqual(totals.total, Decimal("33000.00"))

    def test_unknown_region_is_not_an_error(self):
        totals = pricing.calculate_order_totals([{"price": "5000", "quantity": 2}], "unknown-state")
        self.assertEqual(totals.delivery_fee, Decimal("27000.00"))
        self.assertEqual(totals.total, Decimal("37000.00"))

    def test_total_identity_holds_exactly(self):
        carts = [
            [{"price": "1999.99", "quantity": 3}],
            [{"price": "0.10", "quantity": 7}, {"price": "333.33", "quantity": 1}],
            [{"unit_price": "12.345", "quantity": 1}],
        ]
        discounts = [None, {"percentage": "12.5"}, {"percentage": "33.33"}]
        for items in carts:
            for discount in discounts:
                for state in ("lagos", "edo", "kano", ""):
                    t = pricing.calculate_order_totals(items, state, discount)
                    self.assertEqual(t.total, t.subtotal + t.delivery_fee - t.discount_amount)
                    for value in (t.subtotal, t.delivery_fee, t.discount_amount, t.total):
                        self.assertEqual(value, value.quantize(Decimal("0.01")))

    def test_discount_is_flat_percentage_of_subtotal(self):
        totals = pricing.calculate_order_totals(
            [{"price": "5000", "quantity": 2}], "lagos", {"percentage": "10"}
        )
        self.assertEqual(totals.discount_amount, Decimal("1000.00"))
        self.assertEqual(totals.total, Decimal("19000.00"))

    def test_discount_rounds_half_up(self):
        totals = pricing.calculate_order_totals(
            [{"price": "33.35", "quantity": 1}], "lagos", {"percentage": "50"}
        )
        self.assertEqual(totals.discount_amount, Decimal("16.68"))

    def test_expired_discount_is_ignored(self):
        discount = {"percentage": "10", "valid_until": date(2024, 1, 1)}
        totals = pricing.calculate_order_totals(
            [{"price": "5000", "quantity": 2}], "lagos", discount, today=date(2024, 1, 2)
        )
        self.assertEqual(totals.discount_amount, Decimal("0.00"))
        self.assertEqual(totals.total, Decimal("20000.00"))

    def test_minor_units(self):
        self.assertEqual(pricing.to_minor_units(Decimal("20000.00")), 2000000)
        self.assertEqual(pricing.to_minor_units(Decimal("0.015")), 2)


@override_settings(FRONTEND_URL="https://shop.test", NOTIFICATIONS_RUN_INLINE=True)
class CreateOrderTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(price="5000.00", stock=5)
        add_line(self.user, self.product, 2)
        self.gateway = FakeGateway()

    def _create(self, **overrides):
        kwargs = dict(
            state="Lagos", city="Ikeja", address="1 Allen Avenue",
            email="ada@example.com", gateway=self.gateway,
        )
        kwargs.update(overrides)
        return services.create_order(self.user, **kwargs)

    def test_creates_pending_order_and_initializes_payment(self):
        result = self._create()
        order = result.order

        self.assertEqual(order.payment_status, PaymentStatus.PENDING)
        self.assertEqual(order.order_status, OrderStatus.PENDING)
        self.assertEqual(order.subtotal, Decimal("10000.00"))
        self.assertEqual(order.delivery_fee, Decimal("10000.00"))
        self.assertEqual(order.total, Decimal("20000.00"))
        self.assertEqual(order.payment_reference, result.payment["reference"])
        self.assertTrue(result.payment["authorization_url"].startswith("https://checkout.paystack.test/"))

        call = self.gateway.initialized[0]
        self.assertEqual(call["amount"], 2000000)
        self.assertEqual(call["email"], "ada@example.com")
        self.assertEqual(call["callback_url"], "https://shop.test/verify-payment")
        self.assertEqual(call["metadata"]["order_id"], order.pk)
        self.assertEqual(call["metadata"]["user_id"], self.user.pk)
        self.assertTrue(call["reference"].startswith(f"order_{order.pk}_"))

    def test_order_creation_does_not_touch_stock_or_cart(self):
        self._create()
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 5)
        self.assertEqual(CartLine.objects.filter(user=self.user).count(), 1)

    def test_lines_are_snapshots(self):
        order = self._create().order
        self.product.name = "Renamed"
        self.product.price = Decimal("9999.00")
        self.product.save()

        line = Order.objects.get(pk=order.pk).lines.get()
        self.assertEqual(line.product_name, "Moringa Tea")
        self.assertEqual(line.unit_price, Decimal("5000.00"))
        self.assertEqual(line.quantity, 2)
        self.assertEqual(line.product_id, self.product.pk)

    def test_empty_cart(self):
        CartLine.objects.all().delete()
        with self.assertRaises(EmptyCart):
            self._create()
        self.assertFalse(Order.objects.exists())

    def test_invalid_region(self):
        with self.assertRaises(InvalidRegion):
            self._create(state="Atlantis")
        self.assertFalse(Order.objects.exists())

    def test_email_required(self):
        with self.assertRaises(ValidationError):
            self._create(email="")

    def test_address_required(self):
        with self.assertRaises(ValidationError):
            self._create(address="  ")

    def test_insufficient_stock_names_product(self):
        other = make_product(name="Bitter Leaf Capsules", stock=1)
        add_line(self.user, other, 3)
        with self.assertRaises(InsufficientStock) as cm:
            self._create()
        self.assertIn("Bitter Leaf Capsules", str(cm.exception))
        self.assertEqual(cm.exception.extra["product_id"], other.pk)
        self.assertFalse(Order.objects.exists())

    def test_gateway_failure_keeps_order_for_retry(self):
        self.gateway.initialize_error = GatewayError("Initialize transaction failed: Gateway error 500.")
        with self.assertRaises(PaymentInitializationFailed) as cm:
            self._create()

        order = Order.objects.get()
        self.assertEqual(cm.exception.extra["order_id"], order.pk)
        self.assertEqual(order.order_status, OrderStatus.PAYMENT_FAILED)
        self.assertEqual(order.payment_status, PaymentStatus.PENDING)
        self.assertIsNone(order.payment_reference)

    def test_gateway_timeout_takes_failure_path(self):
        self.gateway.initialize_error = GatewayTimeout("Gateway request timed out")
        with self.assertRaises(PaymentInitializationFailed):
            self._create()
        self.assertEqual(Order.objects.get().order_status, OrderStatus.PAYMENT_FAILED)

    def test_retry_after_gateway_failure_gets_new_reference(self):
        self.gateway.initialize_error = GatewayError("down")
        with self.assertRaises(PaymentInitializationFailed):
            self._create()
        order = Order.objects.get()

        self.gateway.initialize_error = None
        result = services.retry_payment(self.user, order.pk, email="ada@example.com", gateway=self.gateway)

        order.refresh_from_db()
        self.assertEqual(order.order_status, OrderStatus.PENDING)
        self.assertEqual(order.payment_reference, result.payment["reference"])
        self.assertNotEqual(self.gateway.initialized[0]["reference"], self.gateway.initialized[1]["reference"])

    def test_retry_generates_distinct_references(self):
        first = self._create()
        second = services.retry_payment(self.user, first.order.pk, email="ada@example.com", gateway=self.gateway)
        self.assertNotEqual(first.payment["reference"], second.payment["reference"])

    def test_retry_rejected_for_paid_order(self):
        order = self._create().order
        Order.objects.filter(pk=order.pk).update(
            payment_status=PaymentStatus.SUCCESS, order_status=OrderStatus.PROCESSING
        )
        with self.assertRaises(DuplicatePayment):
            services.retry_payment(self.user, order.pk, email="ada@example.com", gateway=self.gateway)
        self.assertEqual(len(self.gateway.initialized), 1)

    def test_discount_code_applied(self):
        Discount.objects.create(code="WELCOME10", percentage=Decimal("10"), valid_until=timezone.localdate() + timedelta(days=3))
        order = self._create(discount_code="welcome10").order
        self.assertEqual(order.discount_code, "WELCOME10")
        self.assertEqual(order.discount_amount, Decimal("1000.00"))
        self.assertEqual(order.total, Decimal("19000.00"))

    def test_expired_discount_code_gives_no_discount(self):
        Discount.objects.create(code="OLD", percentage=Decimal("10"), valid_until=timezone.localdate() - timedelta(days=1))
        order = self._create(discount_code="OLD").order
        self.assertEqual(order.discount_amount, Decimal("0.00"))
        self.assertEqual(order.total, Decimal("20000.00"))

    def test_unknown_discount_code_rejected(self):
        with self.assertRaises(ValidationError):
            self._create(discount_code="NOPE")

    def test_confirmation_email_sent_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            order = self._create().order
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ["ada@example.com"])
        self.assertIn(f"#{order.pk}", mail.outbox[0].subject)
        self.assertIn("Moringa Tea", mail.outbox[0].body)

    def test_unqueueable_confirmation_does_not_undo_order(self):
        with patch("orders.services.queue_order_confirmation", side_effect=RuntimeError("no template")):
            with self.assertLogs("orders.services", level="ERROR"):
                result = self._create()
        self.assertTrue(Order.objects.filter(pk=result.order.pk).exists())
        self.assertEqual(result.payment["reference"], result.order.payment_reference)

    def test_email_failure_does_not_undo_order(self):
        with patch("orders.emails.send_order_confirmation", side_effect=RuntimeError("smtp down")):
            with self.assertLogs("storefront.tasks", level="ERROR"):
                with self.captureOnCommitCallbacks(execute=True):
                    result = self._create()
        self.assertTrue(Order.objects.filter(pk=result.order.pk).exists())
        self.assertIsNotNone(result.order.payment_reference)


class OrderReadTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.other = make_user("bola")
        product = make_product()
        add_line(self.user, product, 1)
        self.order = services.create_order(
            self.user, state="oyo", city="Ibadan", address="2 Ring Road",
            email="ada@example.com", gateway=FakeGateway(),
        ).order

    def test_get_order_is_scoped_to_owner(self):
        self.assertEqual(services.get_order(self.user, self.order.pk).pk, self.order.pk)
        with self.assertRaises(OrderNotFound):
            services.get_order(self.other, self.order.pk)

    def test_list_orders_paginates(self):
        orders, pagination = services.list_orders(self.user, page=1, limit=10)
        self.assertEqual([o.pk for o in orders], [self.order.pk])
        self.assertEqual(pagination, {"page": 1, "limit": 10, "total": 1, "totalPages": 1})


class AdminOrderStatusTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.staff = make_user("admin", is_staff=True)
        add_line(self.user, make_product(), 1)
        self.order = services.create_order(
            self.user, state="lagos", city="Yaba", address="3 Herbert Macaulay",
            email="ada@example.com", gateway=FakeGateway(),
        ).order

    def _put(self, status):
        return self.client.put(
            reverse("admin_order_status", kwargs={"order_id": self.order.pk}),
            data=json.dumps({"order_status": status}),
            content_type="application/json",
        )

    def test_requires_staff(self):
        self.client.force_login(self.user)
        self.assertEqual(self._put("shipped").status_code, 403)

    def test_staff_can_update_status(self):
        self.client.force_login(self.staff)
        resp = self._put("shipped")
        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, OrderStatus.SHIPPED)

    def test_invalid_status_rejected(self):
        self.client.force_login(self.staff)
        self.assertEqual(self._put("teleported").status_code, 400)

    def test_paid_order_cannot_be_cancelled(self):
        Order.objects.filter(pk=self.order.pk).update(
            payment_status=PaymentStatus.SUCCESS, order_status=OrderStatus.PROCESSING
        )
        self.client.force_login(self.staff)
        self.assertEqual(self._put("cancelled").status_code, 409)
        self.order.refresh_from_db()
        self.assertEqual(self.order.order_status, OrderStatus.PROCESSING)

    def test_unpaid_order_can_be_cancelled(self):
        order = services.set_order_status(self.order.pk, OrderStatus.CANCELLED)
        self.assertEqual(order.order_status, OrderStatus.CANCELLED)
        self.assertEqual(order.payment_status, PaymentStatus.PENDING)

    def test_payment_landing_during_cancel_keeps_status_pair(self):
        # the payment commits just before anything the override might save
        original_save = Order.save

        def pay_then_save(order, *args, **kwargs):
            reconciliation.apply_success(order.pk)
            return original_save(order, *args, **kwargs)

        with patch.object(Order, "save", autospec=True, side_effect=pay_then_save):
            services.set_order_status(self.order.pk, OrderStatus.CANCELLED)

        self.order.refresh_from_db()
        self.assertNotEqual(
            (self.order.payment_status, self.order.order_status),
            (PaymentStatus.SUCCESS, OrderStatus.CANCELLED),
        )

    def test_unknown_order(self):
        with self.assertRaises(OrderNotFound):
            services.set_order_status(987654, OrderStatus.SHIPPED)


class OrderAdminTests(TestCase):
    def setUp(self):
        self.user = make_user()
        add_line(self.user, make_product(stock=10), 1)
        self.unpaid = self._order()
        self.paid = self._order()
        reconciliation.apply_success(self.paid.pk)
        self.client.force_login(make_user("root", is_staff=True, is_superuser=True))

    def _order(self):
        return services.create_order(
            self.user, state="lagos", city="Yaba", address="3 Herbert Macaulay",
            email="ada@example.com", gateway=FakeGateway(),
        ).order

    def test_statuses_are_read_only_in_the_form(self):
        self.assertIn("payment_status", OrderAdmin.readonly_fields)
        self.assertIn("order_status", OrderAdmin.readonly_fields)

    def test_cancel_action_skips_paid_orders(self):
        resp = self.client.post(reverse("admin:orders_order_changelist"), {
            "action": "mark_cancelled",
            "_selected_action": [self.unpaid.pk, self.paid.pk],
        })
        self.assertEqual(resp.status_code, 302)

        self.unpaid.refresh_from_db()
        self.paid.refresh_from_db()
        self.assertEqual(self.unpaid.order_status, OrderStatus.CANCELLED)
        self.assertEqual(self.paid.order_status, OrderStatus.PROCESSING)
        self.assertEqual(self.paid.payment_status, PaymentStatus.SUCCESS)


@override_settings(FRONTEND_URL="https://shop.test")
class OrderViewTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(stock=4)
        add_line(self.user, self.product, 2)
        self.gateway = FakeGateway()
        patcher = patch("orders.views.get_gateway", return_value=self.gateway)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _post_create(self, payload):
        return self.client.post(
            reverse("orders:create"), data=json.dumps(payload), content_type="application/json"
        )

    def test_requires_authentication(self):
        resp = self._post_create({"state": "lagos"})
        self.assertEqual(resp.status_code, 401)

    def test_create_returns_order_and_payment(self):
        self.client.force_login(self.user)
        resp = self._post_create({
            "state": "Lagos", "city": "Ikeja", "address": "1 Allen Avenue", "email": "ada@example.com",
        })
        self.assertEqual(resp.status_code, 201)
        data = resp.json()
        self.assertEqual(data["order"]["total"], "20000.00")
        self.assertEqual(data["order"]["payment_status"], "pending")
        self.assertEqual(data["payment"]["reference"], data["order"]["payment_reference"])
        self.assertIn("authorization_url", data["payment"])

    def test_non_object_body_is_400(self):
        self.client.force_login(self.user)
        for payload in ("[]", "\"x\"", "1"):
            resp = self.client.post(reverse("orders:create"), data=payload, content_type="application/json")
            self.assertEqual(resp.status_code, 400, payload)
        self.assertFalse(Order.objects.exists())

    def test_invalid_region_is_400(self):
        self.client.force_login(self.user)
        resp = self._post_create({
            "state": "Narnia", "city": "x", "address": "y", "email": "ada@example.com",
        })
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "invalid_region")

    def test_gateway_failure_reports_order_id(self):
        self.gateway.initialize_error = GatewayError("down")
        self.client.force_login(self.user)
        resp = self._post_create({
            "state": "Lagos", "city": "Ikeja", "address": "1 Allen Avenue", "email": "ada@example.com",
        })
        self.assertEqual(resp.status_code, 502)
        body = resp.json()
        self.assertEqual(body["code"], "payment_initialization_failed")
        order = Order.objects.get(pk=body["order_id"])
        self.assertEqual(order.order_status, OrderStatus.PAYMENT_FAILED)

    def test_retry_endpoint(self):
        self.client.force_login(self.user)
        created = self._post_create({
            "state": "Lagos", "city": "Ikeja", "address": "1 Allen Avenue", "email": "ada@example.com",
        }).json()
        resp = self.client.post(
            reverse("orders:retry_payment", kwargs={"order_id": created["order"]["id"]}),
            data=json.dumps({"email": "ada@example.com"}),
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertNotEqual(resp.json()["payment"]["reference"], created["payment"]["reference"])

    def test_detail_hides_other_users_orders(self):
        self.client.force_login(self.user)
        created = self._post_create({
            "state": "Lagos", "city": "Ikeja", "address": "1 Allen Avenue", "email": "ada@example.com",
        }).json()
        self.client.force_login(make_user("bola"))
        resp = self.client.get(reverse("orders:detail", kwargs={"order_id": created["order"]["id"]}))
        self.assertEqual(resp.status_code, 404)
