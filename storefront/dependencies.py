from functools import lru_cache
from typing import Callable

from fastapi import Depends

from storefront.config import Settings, get_settings
from storefront.database import SessionLocal
from storefront.gateway import MercadoPagoGateway, PaymentGateway
from storefront.notifications import NotificationChannel, NotificationTrigger, TwilioWhatsAppChannel
from storefront.order_store import OrderStore
from storefront.payment_intents import PaymentIntentService
from storefront.reconciler import WebhookReconciler


def get_order_store() -> OrderStore:
    return OrderStore(SessionLocal)


# Clients are built on first use and reused for the life of the process.
# lru_cache does not remember exceptions, so a missing credential keeps
# failing with ConfigurationError until it is configured.
@lru_cache
def get_gateway() -> PaymentGateway:
    access_token = get_settings().require("mercadopago_access_token")
    return MercadoPagoGateway(access_token)


@lru_cache
def get_channel() -> NotificationChannel:
    sid, token, from_number, to_number = get_settings().require(
        "twilio_account_sid", "twilio_auth_token", "notification_from", "notification_to"
    )
    return TwilioWhatsAppChannel(sid, token, from_number, to_number)


def get_channel_provider() -> Callable[[], NotificationChannel]:
    return get_channel


def get_notification_trigger(
    channel_provider: Callable[[], NotificationChannel] = Depends(get_channel_provider),
    store: OrderStore = Depends(get_order_store),
) -> NotificationTrigger:
    return NotificationTrigger(channel_provider, store)


def get_intent_service(
    gateway: PaymentGateway = Depends(get_gateway),
    store: OrderStore = Depends(get_order_store),
    settings: Settings = Depends(get_settings),
) -> PaymentIntentService:
    return PaymentIntentService(gateway, store, settings)


def get_reconciler(
    gateway: PaymentGateway = Depends(get_gateway),
    store: OrderStore = Depends(get_order_store),
    notifier: NotificationTrigger = Depends(get_notification_trigger),
) -> WebhookReconciler:
    return WebhookReconciler(gateway, store, notifier)
