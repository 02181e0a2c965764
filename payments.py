import hashlib
import hmac
import logging
import time
from decimal import Decimal
from typing import Optional

import razorpay
from razorpay.errors import BadRequestError, GatewayError, ServerError

from errors import GatewayNotConfigured, GatewayUnavailable, InvalidRequest, SignatureMismatch
from schemas import to_money

logger = logging.getLogger(__name__)

MINIMUM_AMOUNT = Decimal("1.00")


def sign(gateway_order_id: str, payment_id: str, secret: str) -> str:
    message = f"{gateway_order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class PaymentVerifier:
    """Checks the gateway's checkout callback signature. Pure, no I/O."""

    def __init__(self, secret: Optional[str]):
        self.secret = secret

    def verify(self, gateway_order_id: str, payment_id: str, signature: str) -> None:
        if not self.secret:
            raise GatewayNotConfigured()
        expected = sign(gateway_order_id, payment_id, self.secret)
        if not hmac.compare_digest(expected.encode("utf-8"), (signature or "").encode("utf-8")):
            logger.warning("payment signature mismatch: gateway_order=%s payment=%s", gateway_order_id, payment_id)
            raise SignatureMismatch(gateway_order_id)
        logger.info("payment signature verified: gateway_order=%s payment=%s", gateway_order_id, payment_id)


def to_minor_units(amount: Decimal) -> int:
    return int(to_money(amount) * 100)


class RazorpayGateway:
    def __init__(self, key_id: Optional[str], key_secret: Optional[str], client=None):
        self.key_id = key_id
        self._client = client
        if client is None and key_id and key_secret:
            self._client = razorpay.Client(auth=(key_id, key_secret))

    @property
    def configured(self) -> bool:
        return self._client is not None

    def create_payment_intent(self, amount: Decimal, currency: str, receipt: Optional[str] = None) -> dict:
        if self._client is None:
            raise GatewayNotConfigured()
        if to_money(amount) < MINIMUM_AMOUNT:
            raise InvalidRequest("amount", f"Minimum order amount is {MINIMUM_AMOUNT}")
        options = {
            "amount": to_minor_units(amount),
            "currency": currency.upper(),
            "receipt": receipt or f"receipt_order_{int(time.time() * 1000)}",
            "payment_capture": 1,
            "notes": {"source": "web_checkout"},
        }
        try:
            gateway_order = self._client.order.create(data=options)
        except (BadRequestError, ServerError, GatewayError) as e:
            logger.error("razorpay order creation failed: %s", e)
            raise GatewayUnavailable("Failed to create payment order", details=str(e))
        except OSError as e:
            logger.error("razorpay unreachable: %s", e)
            raise GatewayUnavailable("Payment gateway unreachable", details=str(e))
        logger.info("razorpay order created: id=%s amount=%s", gateway_order.get("id"), gateway_order.get("amount"))
        return gateway_order
