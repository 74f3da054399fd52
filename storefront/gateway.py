from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import mercadopago
import structlog

from storefront.errors import UpstreamError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GatewayIntent:
    id: str
    redirect_url: str
    sandbox_redirect_url: Optional[str] = None


@dataclass(frozen=True)
class GatewayPayment:
    status: Optional[str]
    external_reference: Optional[str]


@dataclass(frozen=True)
class GatewayMerchantOrder:
    external_reference: Optional[str]
    payments: List[GatewayPayment] = field(default_factory=list)


class PaymentGateway(ABC):
    """Calls the pipeline makes against the external payment gateway."""

    @abstractmethod
    def create_intent(self, request: dict) -> GatewayIntent:
        ...

    @abstractmethod
    def get_payment(self, payment_id: str) -> GatewayPayment:
        ...

    @abstractmethod
    def get_merchant_order(self, merchant_order_id: str) -> GatewayMerchantOrder:
        ...


class MercadoPagoGateway(PaymentGateway):
    def __init__(self, access_token: str, sdk=None):
        self._sdk = sdk or mercadopago.SDK(access_token)

    def create_intent(self, request: dict) -> GatewayIntent:
        body = self._call("create preference", lambda: self._sdk.preference().create(request))
        return GatewayIntent(
            id=str(body["id"]),
            redirect_url=body["init_point"],
            sandbox_redirect_url=body.get("sandbox_init_point"),
        )

    def get_payment(self, payment_id: str) -> GatewayPayment:
        body = self._call(f"fetch payment {payment_id}", lambda: self._sdk.payment().get(payment_id))
        return _payment_from(body)

    def get_merchant_order(self, merchant_order_id: str) -> GatewayMerchantOrder:
        body = self._call(
            f"fetch merchant order {merchant_order_id}",
            lambda: self._sdk.merchant_order().get(merchant_order_id),
        )
        return GatewayMerchantOrder(
            external_reference=_reference(body.get("external_reference")),
            payments=[_payment_from(p) for p in body.get("payments") or []],
        )

    @staticmethod
    def _call(action: str, request):
        try:
            result = request()
        except Exception as exc:
            logger.error("gateway_call_failed", action=action, error=str(exc))
            raise UpstreamError(f"Gateway could not {action}: {exc}") from exc

        status = result.get("status")
        body = result.get("response") or {}
        if not isinstance(status, int) or not 200 <= status < 300:
            logger.error("gateway_call_rejected", action=action, status=status, response=body)
            raise UpstreamError(f"Gateway could not {action}: HTTP {status}", details=body)
        return body


def _reference(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _payment_from(body: dict) -> GatewayPayment:
    return GatewayPayment(
        status=body.get("status") or None,
        external_reference=_reference(body.get("external_reference")),
    )
