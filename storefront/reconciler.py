"""Webhook reconciliation: gateway callbacks to order state.

Every callback re-reads the payment from the gateway and overwrites the
order with a deterministic status pair, so duplicated or reordered
deliveries converge on whatever the gateway itself reports.
"""
import json
from dataclasses import dataclass
from typing import Optional, Tuple, Union
from urllib.parse import urlparse

import structlog

from storefront.errors import CouldNotResolveOrder, InvalidPayload, MissingResourceId
from storefront.gateway import PaymentGateway
from storefront.models import OrderStatus, PaymentStatus
from storefront.notifications import NotificationResult, NotificationTrigger
from storefront.order_store import OrderStore

logger = structlog.get_logger(__name__)

APPROVED = "approved"
PENDING = "pending"


@dataclass(frozen=True)
class Resolution:
    order_id: Optional[str]
    gateway_status: Optional[str]


@dataclass(frozen=True)
class PaymentEvent:
    kind = "payment"
    payment_id: str

    def resolve(self, gateway: PaymentGateway) -> Resolution:
        payment = gateway.get_payment(self.payment_id)
        return Resolution(payment.external_reference, payment.status)


@dataclass(frozen=True)
class MerchantOrderEvent:
    kind = "merchant_order"
    merchant_order_id: str

    def resolve(self, gateway: PaymentGateway) -> Resolution:
        merchant_order = gateway.get_merchant_order(self.merchant_order_id)
        statuses = [payment.status for payment in merchant_order.payments]
        return Resolution(merchant_order.external_reference, merchant_order_status(statuses))


WebhookEvent = Union[PaymentEvent, MerchantOrderEvent]


def merchant_order_status(statuses) -> str:
    """Most favourable status the gateway has confirmed: approved, then pending, else failed."""
    if APPROVED in statuses:
        return APPROVED
    if PENDING in statuses:
        return PENDING
    return "failed"


def map_gateway_status(gateway_status: str) -> Tuple[str, str]:
    """Map a gateway status to (payment_status, order status)."""
    if gateway_status == APPROVED:
        return PaymentStatus.PAID.value, OrderStatus.PROCESSING.value
    if gateway_status == PENDING:
        return PaymentStatus.PENDING.value, OrderStatus.PENDING.value
    return PaymentStatus.FAILED.value, OrderStatus.FAILED.value


def parse_payload(raw: bytes) -> dict:
    if not raw or not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidPayload(f"Webhook body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidPayload("Webhook body must be a JSON object")
    return payload


def _present(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def merchant_order_id_from(resource: Optional[str]) -> Optional[str]:
    if not resource:
        return None
    path = urlparse(resource).path if "://" in resource else resource
    segment = path.rstrip("/").rsplit("/", 1)[-1]
    return segment or None


def parse_event(payload: dict, query: Optional[dict] = None) -> Optional[WebhookEvent]:
    """Pick the event variant from a callback; None for kinds we do not handle.

    Body fields win; query-string parameters fill in what the body lacks.
    """
    query = query or {}
    kind = _present(payload.get("type") or payload.get("topic") or query.get("type") or query.get("topic"))

    if kind == PaymentEvent.kind:
        data = payload.get("data")
        resource_id = _present(data.get("id")) if isinstance(data, dict) else None
        resource_id = resource_id or _present(query.get("data.id") or query.get("id"))
        if not resource_id:
            raise MissingResourceId("Payment webhook without data.id")
        return PaymentEvent(resource_id)

    if kind == MerchantOrderEvent.kind:
        resource = _present(payload.get("resource") or query.get("resource"))
        merchant_order_id = merchant_order_id_from(resource)
        if not merchant_order_id:
            raise MissingResourceId("Merchant order webhook without a usable resource URL")
        return MerchantOrderEvent(merchant_order_id)

    return None


@dataclass(frozen=True)
class ReconcileOutcome:
    handled: bool
    order_id: Optional[str] = None
    gateway_status: Optional[str] = None
    applied: bool = False
    notification: Optional[NotificationResult] = None


class WebhookReconciler:
    def __init__(self, gateway: PaymentGateway, store: OrderStore, notifier: NotificationTrigger):
        self._gateway = gateway
        self._store = store
        self._notifier = notifier

    def handle(self, raw_body: bytes, query: Optional[dict] = None) -> ReconcileOutcome:
        payload = parse_payload(raw_body)
        event = parse_event(payload, query)
        if event is None:
            logger.info("webhook_ignored", type=payload.get("type") or payload.get("topic"))
            return ReconcileOutcome(handled=False)
        return self.reconcile(event)

    def reconcile(self, event: WebhookEvent) -> ReconcileOutcome:
        log = logger.bind(kind=event.kind)
        resolution = event.resolve(self._gateway)
        if not resolution.order_id or not resolution.gateway_status:
            log.warning("webhook_unresolved", order_id=resolution.order_id, status=resolution.gateway_status)
            raise CouldNotResolveOrder("Could not resolve order or payment status from gateway")

        log = log.bind(order_id=resolution.order_id, gateway_status=resolution.gateway_status)
        payment_status, status = map_gateway_status(resolution.gateway_status)
        applied = self._store.transition_payment(resolution.order_id, payment_status, status)
        log.info("order_reconciled", payment_status=payment_status, status=status, applied=applied)

        notification = None
        if resolution.gateway_status == APPROVED:
            notification = self.notify_paid(resolution.order_id)

        return ReconcileOutcome(
            handled=True,
            order_id=resolution.order_id,
            gateway_status=resolution.gateway_status,
            applied=applied,
            notification=notification,
        )

    def notify_paid(self, order_id: str) -> NotificationResult:
        """Best-effort admin notification; the result is logged, never raised."""
        try:
            order = self._store.get(order_id)
        except Exception as exc:
            logger.exception("notification_order_reload_failed", order_id=order_id)
            return NotificationResult(success=False, order_id=order_id, error=str(exc))

        result = self._notifier.notify(order)
        if not result.success:
            logger.warning("notification_failed", order_id=order_id, error=result.error)
        return result
