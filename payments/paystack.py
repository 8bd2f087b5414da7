# payments/paystack.py
import json
from urllib.parse import quote

import requests
from django.conf import settings
from requests import RequestException

from storefront.errors import GatewayError, GatewayTimeout

from .utils import verify_signature

DEFAULT_BASE_URL = "https://api.paystack.co"
DEFAULT_TIMEOUT = 15.0


class PaystackClient:
    """Thin client for the Paystack transaction API.

    Holds its own secret and base URL; build one with :meth:`from_settings`
    and hand it to the checkout and reconciliation code instead of reading
    settings deep inside them.
    """

    def __init__(self, secret_key: str, base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT):
        self.secret_key = secret_key or ""
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "PaystackClient":
        return cls(
            secret_key=getattr(settings, "PAYSTACK_SECRET_KEY", ""),
            base_url=getattr(settings, "PAYSTACK_BASE_URL", DEFAULT_BASE_URL),
            timeout=getattr(settings, "PAYSTACK_TIMEOUT", DEFAULT_TIMEOUT),
        )

    def _headers(self) -> dict:
        if not self.secret_key: raise GatewayError("Missing PAYSTACK_SECRET_KEY")
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _unwrap(self, resp, action: str) -> dict:
        try: body = resp.json()
        except ValueError: body = {"raw": resp.text}
        if resp.status_code == 200 and body.get("status"):
            return body.get("data") or {}
        if resp.status_code == 401: hint = "Check PAYSTACK_SECRET_KEY."
        elif resp.status_code == 400: hint = body.get("message") or "Bad request."
        elif resp.status_code == 404: hint = "Transaction not found."
        elif resp.status_code >= 500: hint = f"Gateway error {resp.status_code}."
        else: hint = body.get("message") or f"HTTP {resp.status_code}"
        raise GatewayError(f"{action} failed: {hint}", details=body)

    def initialize(self, email: str, amount_minor_units: int, reference: str,
                   callback_url: str, metadata: dict) -> dict:
        payload = {
            "email": email,
            "amount": int(amount_minor_units),
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        try:
            resp = requests.post(f"{self.base_url}/transaction/initialize",
                                 json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as e:
            raise GatewayTimeout(f"Gateway request timed out: {e}")
        except RequestException as e:
            raise GatewayError(f"Gateway request failed: {e}")
        data = self._unwrap(resp, "Initialize transaction")
        return {
            "authorization_url": data.get("authorization_url", ""),
            "access_code": data.get("access_code", ""),
            "reference": data.get("reference") or reference,
        }

    def verify(self, reference: str) -> dict:
        url = f"{self.base_url}/transaction/verify/{quote(reference or '', safe='')}"
        try:
            resp = requests.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as e:
            raise GatewayTimeout(f"Gateway request timed out: {e}")
        except RequestException as e:
            raise GatewayError(f"Gateway request failed: {e}")
        data = self._unwrap(resp, "Verify transaction")
        return {
            "status": str(data.get("status") or "").lower(),
            "gateway_response": data.get("gateway_response", ""),
            "metadata": parse_metadata(data.get("metadata")),
            "reference": data.get("reference") or reference,
            "amount": data.get("amount"),
        }

    def is_valid_signature(self, raw_body: bytes, signature: str) -> bool:
        return verify_signature(raw_body, signature, self.secret_key)


def parse_metadata(value) -> dict:
    # Paystack echoes metadata back as an object, a JSON string or "".
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def get_gateway() -> PaystackClient:
    return PaystackClient.from_settings()
