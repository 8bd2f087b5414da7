import json

from django.test import TestCase
from django.urls import reverse

from storefront.errors import InsufficientStock, NotFoundError, ProductNotFound, ValidationError
from storefront.testing import add_line, make_product, make_user

from . import services
from .models import CartLine


class CartServiceTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(stock=5)

    def test_add_then_add_again_replaces_quantity(self):
        services.add_to_cart(self.user, self.product.pk, 2)
        line = services.add_to_cart(self.user, self.product.pk, 4)
        self.assertEqual(line.quantity, 4)
        self.assertEqual(CartLine.objects.filter(user=self.user).count(), 1)

    def test_add_validates_input(self):
        with self.assertRaises(ValidationError):
            services.add_to_cart(self.user, None, 1)
        with self.assertRaises(ValidationError):
            services.add_to_cart(self.user, self.product.pk, 0)
        with self.assertRaises(ValidationError):
            services.add_to_cart(self.user, self.product.pk, "lots")

    def test_add_unknown_product(self):
        with self.assertRaises(ProductNotFound):
            services.add_to_cart(self.user, 424242, 1)

    def test_add_more_than_stock(self):
        with self.assertRaises(InsufficientStock):
            services.add_to_cart(self.user, self.product.pk, 6)

    def test_update_to_zero_removes_line(self):
        line = add_line(self.user, self.product, 2)
        self.assertIsNone(services.update_quantity(self.user, line.pk, 0))
        self.assertFalse(CartLine.objects.exists())

    def test_update_negative_rejected(self):
        line = add_line(self.user, self.product, 2)
        with self.assertRaises(ValidationError):
            services.update_quantity(self.user, line.pk, -1)

    def test_update_other_users_line(self):
        line = add_line(make_user("bola"), self.product, 1)
        with self.assertRaises(NotFoundError):
            services.update_quantity(self.user, line.pk, 2)

    def test_clear_cart(self):
        add_line(self.user, self.product, 1)
        add_line(self.user, make_product(name="Zobo Mix"), 1)
        add_line(make_user("bola"), self.product, 1)
        self.assertEqual(services.clear_cart(self.user.pk), 2)
        self.assertEqual(CartLine.objects.count(), 1)


class CartViewTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(stock=5)
        self.client.force_login(self.user)

    def test_requires_login(self):
        self.client.logout()
        self.assertEqual(self.client.get(reverse("cart:cart")).status_code, 401)

    def test_add_and_list(self):
        resp = self.client.post(
            reverse("cart:add"),
            data=json.dumps({"product_id": self.product.pk, "quantity": 2}),
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 200)

        cart = self.client.get(reverse("cart:cart")).json()["cart"]
        self.assertEqual(len(cart), 1)
        self.assertEqual(cart[0]["quantity"], 2)
        self.assertEqual(cart[0]["product"]["price"], "5000.00")

    def test_add_over_stock_is_409(self):
        resp = self.client.post(
            reverse("cart:add"),
            data=json.dumps({"product_id": self.product.pk, "quantity": 9}),
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["code"], "insufficient_stock")

    def test_update_and_remove(self):
        line = add_line(self.user, self.product, 1)
        resp = self.client.put(
            reverse("cart:update", kwargs={"line_id": line.pk}),
            data=json.dumps({"quantity": 3}),
            content_type="application/json",
        )
        self.assertEqual(resp.json()["cartItem"]["quantity"], 3)

        resp = self.client.delete(reverse("cart:remove", kwargs={"line_id": line.pk}))
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(CartLine.objects.exists())

    def test_clear(self):
        add_line(self.user, self.product, 1)
        self.assertEqual(self.client.delete(reverse("cart:clear")).status_code, 200)
        self.assertFalse(CartLine.objects.exists())
