from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from urllib.parse import urlencode

import structlog

from storefront.config import Settings
from storefront.errors import InvalidOrderData, OrderAlreadyPaid
from storefront.gateway import GatewayIntent, PaymentGateway
from storefront.models import PaymentStatus
from storefront.order_store import OrderStore
from storefront.schemas import CheckoutItem, OrderRecord

logger = structlog.get_logger(__name__)

INTENT_TTL = timedelta(minutes=30)
TOTAL_TOLERANCE = 0.01
PLACEHOLDER_EMAIL = "guest@example.com"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def split_full_name(full_name: Optional[str]):
    parts = (full_name or "").split()
    first = parts[0] if parts else "Guest"
    last = " ".join(parts[1:]) or "Customer"
    return first, last


def validate_items(items: List[CheckoutItem], total: Optional[float]) -> None:
    if not items:
        raise InvalidOrderData("Order has no items")
    for index, item in enumerate(items):
        if not item.product.name:
            raise InvalidOrderData(f"Item {index} has no product name")
        if item.quantity < 1:
            raise InvalidOrderData(f"Item {index} has a non-positive quantity")
        if item.product.price <= 0:
            raise InvalidOrderData(f"Item {index} has a non-positive price")
    if total is None or total <= 0:
        raise InvalidOrderData("Order total must be positive")

    items_sum = sum(item.product.price * item.quantity for item in items)
    if abs(items_sum - total) > TOTAL_TOLERANCE:
        raise InvalidOrderData(
            "Item amounts do not add up to the order total",
            details={"items_sum": round(items_sum, 2), "total": total},
        )


def validate_against_order(order: OrderRecord, items: List[CheckoutItem]) -> None:
    """The checkout may only charge what the stored order is worth."""
    if not order.items:
        raise InvalidOrderData(f"Order {order.id} has no items")
    if order.total <= 0:
        raise InvalidOrderData(f"Order {order.id} has a non-positive total")

    items_sum = sum(item.product.price * item.quantity for item in items)
    if abs(items_sum - order.total) > TOTAL_TOLERANCE:
        raise InvalidOrderData(
            "Item amounts do not match the stored order total",
            details={"items_sum": round(items_sum, 2), "order_total": order.total},
        )


def build_preference(
    order: OrderRecord,
    items: List[CheckoutItem],
    return_base_url: str,
    webhook_url: str,
    created_at: datetime,
    currency: str = "COP",
    statement_descriptor: Optional[str] = None,
) -> dict:
    """Build the Mercado Pago preference body for ``order``.

    ``external_reference`` is the order id: it is the only link the
    webhook has back to the order.
    """
    address = order.shipping_address
    full_name = (address.full_name if address else None) or (
        order.guest_info.full_name if order.guest_info else None
    )
    first_name, last_name = split_full_name(full_name)

    payer = {
        "first_name": first_name,
        "last_name": last_name,
        "phone": {"number": order.customer_phone},
        "address": {
            "street_name": address.address if address else None,
            "zip_code": address.postal_code if address else None,
        },
    }
    payer["email"] = (order.guest_info.email if order.guest_info else None) or PLACEHOLDER_EMAIL

    base = return_base_url.rstrip("/")

    def back_url(status):
        return f"{base}/pago?{urlencode({'status': status, 'order_id': order.id})}"

    preference = {
        "items": [
            {
                "title": item.product.name,
                "quantity": item.quantity,
                "currency_id": currency,
                "unit_price": float(item.product.price),
                "description": f"Order #{order.id}",
            }
            for item in items
        ],
        "payer": payer,
        "back_urls": {
            "success": back_url("approved"),
            "failure": back_url("rejected"),
            "pending": back_url("pending"),
        },
        "auto_return": "approved",
        "external_reference": order.id,
        "expires": True,
        "expiration_date_from": created_at.isoformat(timespec="milliseconds"),
        "expiration_date_to": (created_at + INTENT_TTL).isoformat(timespec="milliseconds"),
        "notification_url": webhook_url,
        # approved or rejected only, never left pending
        "binary_mode": True,
        "metadata": {
            "order_id": order.id,
            "timestamp": created_at.isoformat(),
        },
    }
    if statement_descriptor:
        preference["statement_descriptor"] = statement_descriptor
    return preference


class PaymentIntentService:
    def __init__(
        self,
        gateway: PaymentGateway,
        store: OrderStore,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._gateway = gateway
        self._store = store
        self._settings = settings
        self._clock = clock

    def create(
        self,
        order_id: str,
        items: List[CheckoutItem],
        total: Optional[float],
        origin: Optional[str] = None,
    ) -> GatewayIntent:
        log = logger.bind(order_id=order_id)
        validate_items(items, total)

        webhook_url = self._settings.webhook_url
        return_base_url = origin or self._settings.require("storefront_url")

        order = self._store.get(order_id)
        if order.payment_status == PaymentStatus.PAID.value:
            raise OrderAlreadyPaid(f"Order {order_id} is already paid")
        validate_against_order(order, items)

        preference = build_preference(
            order,
            items,
            return_base_url=return_base_url,
            webhook_url=webhook_url,
            created_at=self._clock(),
            currency=self._settings.payment_currency,
            statement_descriptor=self._settings.statement_descriptor,
        )
        log.info("creating_payment_intent", items=len(items), total=total)
        intent = self._gateway.create_intent(preference)
        log.info("payment_intent_created", preference_id=intent.id)

        self._store.update(order_id, {"payment_url": intent.redirect_url})
        return intent
