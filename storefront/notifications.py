from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog
from twilio.rest import Client

from storefront.errors import InvalidOrderData, UpstreamError
from storefront.schemas import OrderRecord

logger = structlog.get_logger(__name__)

PAYMENT_METHOD_LABELS = {
    "cash_on_delivery": "Cash on delivery",
    "mercadopago": "Mercado Pago",
}


class NotificationChannel(ABC):
    @abstractmethod
    def send(self, text: str) -> str:
        """Deliver ``text`` and return the channel's message id."""

    def describe(self) -> dict:
        return {}


class TwilioWhatsAppChannel(NotificationChannel):
    """Sends WhatsApp messages to one fixed admin number through Twilio."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str, to_number: str, client=None):
        self._client = client or Client(account_sid, auth_token)
        self._from = _whatsapp(from_number)
        self._to = _whatsapp(to_number)

    def send(self, text: str) -> str:
        try:
            message = self._client.messages.create(body=text, from_=self._from, to=self._to)
        except Exception as exc:
            raise UpstreamError(f"Failed to send WhatsApp notification: {exc}") from exc
        return message.sid

    def describe(self) -> dict:
        return {"channel": "whatsapp", "from_configured": bool(self._from), "to_configured": bool(self._to)}


def _whatsapp(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    order_id: Optional[str]
    message_id: Optional[str] = None
    error: Optional[str] = None
    context: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_response(self) -> dict:
        if self.success:
            return {"success": True, "messageId": self.message_id, "timestamp": self.timestamp}
        return {
            "success": False,
            "error": self.error,
            "context": self.context,
            "timestamp": self.timestamp,
        }


def format_order_summary(order: OrderRecord) -> str:
    address = order.shipping_address
    guest = order.guest_info
    lines = [
        f"New order #{order.id}",
        "",
        "Customer:",
    ]
    if order.is_guest:
        lines.append("(Guest checkout)")
    lines += [
        f"- Name: {order.customer_name or 'Not provided'}",
        f"- Email: {(guest.email if guest else None) or 'Not provided'}",
        f"- Phone: {order.customer_phone or 'Not provided'}",
        "",
        "Delivery address:",
    ]
    if address:
        lines += [
            part for part in (address.address, address.city, address.postal_code, address.country) if part
        ]
    else:
        lines.append("Not provided")

    method = PAYMENT_METHOD_LABELS.get(order.payment_method, order.payment_method or "Unknown")
    lines += [
        "",
        "Payment:",
        f"- Method: {method}",
        f"- Status: {order.payment_status}",
        f"- Total: ${order.total:,.2f}",
        "",
        "Products:",
    ]
    for item in order.items:
        lines += [
            f"- {item.product_name or item.product_id}",
            f"   Quantity: {item.quantity}",
            f"   Price: ${item.price_at_time:,.2f}",
            f"   Subtotal: ${item.subtotal:,.2f}",
        ]
    lines += ["", f"Order status: {order.status}"]
    return "\n".join(lines)


class NotificationTrigger:
    """Formats a paid order and hands it to the operational channel.

    Never raises: every failure comes back as an unsuccessful
    NotificationResult so callers can log it and carry on.

    The channel comes from a provider called on each notification, so a
    channel that cannot be built only fails that notification.
    """

    def __init__(self, channel_provider: Callable[[], NotificationChannel], store=None):
        self._channel_provider = channel_provider
        self._store = store

    def notify(self, order: OrderRecord) -> NotificationResult:
        log = logger.bind(order_id=order.id)
        channel = None
        try:
            channel = self._channel_provider()
            if not order.items and self._store is not None:
                order = self._store.get(order.id)
            if not order.items:
                raise InvalidOrderData("No order items found")
            message_id = channel.send(format_order_summary(order))
        except Exception as exc:
            log.exception("order_notification_failed", error=str(exc))
            return NotificationResult(
                success=False,
                order_id=order.id,
                error=str(exc),
                context=self._context(channel),
            )

        log.info("order_notification_sent", message_id=message_id)
        return NotificationResult(success=True, order_id=order.id, message_id=message_id)

    def _context(self, channel: Optional[NotificationChannel]) -> dict:
        context = {"store_available": self._store is not None, "channel_configured": channel is not None}
        if channel is not None:
            context.update(channel.describe())
        return context
