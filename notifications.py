import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from schemas import Order

logger = logging.getLogger(__name__)


class SmsNotifier:
    """Fire-and-forget SMS. Failures are logged, never raised to the order flow."""

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        admin_phone: Optional[str] = None,
        client=None,
    ):
        self.from_number = from_number
        self.admin_phone = admin_phone
        self._client = client
        if client is None and account_sid and auth_token and from_number:
            self._client = Client(account_sid, auth_token)
        if self._client is None:
            logger.warning("Twilio not configured - SMS feature disabled")

    def notify(self, phone: Optional[str], message: str) -> bool:
        if self._client is None or not phone:
            return False
        try:
            self._client.messages.create(to=phone, from_=self.from_number, body=message)
        except (TwilioException, OSError) as e:
            logger.warning("SMS to %s failed: %s", phone, e)
            return False
        logger.info("SMS sent to %s", phone)
        return True

    def order_completed(self, order: Order) -> None:
        info = order.shipping_info
        self.notify(
            info.phone,
            f"Hi {info.first_name}, your payment of Rs.{order.total_amount} for order {order.id} is confirmed. "
            "We will let you know when it ships.",
        )
        self.notify(
            self.admin_phone,
            f"New paid order {order.id}: {len(order.items)} item(s), Rs.{order.total_amount}, {info.city}.",
        )

    def order_shipped(self, order: Order) -> None:
        tracking = f" Tracking: {order.tracking_number}." if order.tracking_number else ""
        self.notify(order.shipping_info.phone, f"Your order {order.id} has been shipped.{tracking}")
