"""
Razorpay integration

Provider orders are created through the Orders REST API (HTTP basic auth with
key id / key secret). Checkout callbacks are authenticated with the documented
scheme: hex HMAC-SHA256 of "<order_id>|<payment_id>" keyed with the secret.
"""

import hashlib
import hmac
import logging
from typing import Optional

import httpx

import config

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    pass


def to_subunits(amount: float) -> int:
    # rupees -> paise
    return int(round(amount * 100))


def compute_signature(secret: str, order_id: str, payment_id: str) -> str:
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class RazorpayClient:
    def __init__(self, key_id: str, key_secret: str, base_url: str = config.RAZORPAY_API_URL,
                 transport: Optional[httpx.BaseTransport] = None, timeout: float = 10.0):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout

    def create_order(self, amount: float, currency: str = "INR", receipt: Optional[str] = None) -> dict:
        if not self.key_id or not self.key_secret:
            raise PaymentGatewayError("Razorpay credentials are not configured")
        body = {"amount": to_subunits(amount), "currency": currency}
        if receipt:
            body["receipt"] = receipt
        try:
            with httpx.Client(auth=(self.key_id, self.key_secret), timeout=self.timeout,
                              transport=self.transport) as client:
                response = client.post(f"{self.base_url}/orders", json=body)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PaymentGatewayError(f"Razorpay rejected order creation ({e.response.status_code})") from e
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"Razorpay unreachable: {e}") from e
        data = response.json()
        logger.info("Created Razorpay order %s for receipt %s", data.get("id"), receipt)
        return data

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = compute_signature(self.key_secret, order_id, payment_id)
        return hmac.compare_digest(expected.encode(), (signature or "").encode())


def get_gateway() -> RazorpayClient:
    return RazorpayClient(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET, config.RAZORPAY_API_URL)
