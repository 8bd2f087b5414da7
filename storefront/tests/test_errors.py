import json

from django.contrib.auth.models import AnonymousUser
from django.test import RequestFactory, SimpleTestCase

from storefront.errors import (
    ConflictError, GatewayTimeout, InvalidRegion, OrderNotFound, PaymentInitializationFailed, StoreError,
)
from storefront.http import api_login_required, store_errors


def _raising(exc):
    @store_errors
    def view(request):
        raise exc
    return view


class StoreErrorMappingTests(SimpleTestCase):
    def setUp(self):
        self.request = RequestFactory().post("/api/orders/create")

    def _call(self, exc):
        resp = _raising(exc)(self.request)
        return resp.status_code, json.loads(resp.content)

    def test_validation(self):
        status, body = self._call(InvalidRegion("Invalid Nigerian state", state="Atlantis"))
        self.assertEqual(status, 400)
        self.assertEqual(body, {"error": "Invalid Nigerian state", "code": "invalid_region", "state": "Atlantis"})

    def test_not_found(self):
        self.assertEqual(self._call(OrderNotFound("Order not found"))[0], 404)

    def test_conflict(self):
        self.assertEqual(self._call(ConflictError("nope"))[0], 409)

    def test_gateway_errors(self):
        status, body = self._call(PaymentInitializationFailed("failed", order_id=7))
        self.assertEqual((status, body["order_id"]), (502, 7))
        self.assertEqual(self._call(GatewayTimeout("slow"))[0], 503)

    def test_unexpected_exception_is_hidden(self):
        with self.assertLogs("storefront.http", level="ERROR"):
            status, body = self._call(KeyError("secret detail"))
        self.assertEqual(status, 500)
        self.assertEqual(body, {"error": "Internal server error"})

    def test_default_message(self):
        self.assertEqual(StoreError().message, "StoreError")


class ApiLoginRequiredTests(SimpleTestCase):
    def test_anonymous_gets_json_401(self):
        request = RequestFactory().get("/api/orders/")
        request.user = AnonymousUser()
        resp = api_login_required(lambda r: None)(request)
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(json.loads(resp.content), {"error": "Authentication required"})


class HealthTests(SimpleTestCase):
    def test_health(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "OK")
        self.assertTrue(resp.json()["paystack_configured"])
