from datetime import datetime, timedelta, timezone

import pytest

from storefront.config import Settings
from storefront.errors import ConfigurationError, InvalidOrderData, OrderAlreadyPaid, OrderNotFound
from storefront.payment_intents import PaymentIntentService, build_preference, split_full_name
from storefront.schemas import CheckoutItem

CREATED_AT = datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc)

SETTINGS = Settings(
    public_base_url="https://api.shop.test",
    storefront_url="https://shop.test",
    payment_currency="COP",
    statement_descriptor="SHOP",
)


def checkout_items(*lines):
    return [
        CheckoutItem(product={"name": name, "price": price}, quantity=qty)
        for name, qty, price in lines
    ]


@pytest.fixture
def service(gateway, store):
    return PaymentIntentService(gateway, store, SETTINGS, clock=lambda: CREATED_AT)


def test_split_full_name():
    assert split_full_name("Ana Maria Rojas") == ("Ana", "Maria Rojas")
    assert split_full_name("Cher") == ("Cher", "Customer")
    assert split_full_name("") == ("Guest", "Customer")
    assert split_full_name(None) == ("Guest", "Customer")


@pytest.mark.parametrize("lines", [
    [("Linen shirt", 2, 45000.0), ("Canvas tote", 1, 30000.0)],
    [("Socks", 3, 0.1), ("Cap", 7, 19.99)],
    [("Gift card", 1, 1.0)],
])
def test_preference_items_add_up_to_total(service, gateway, store, seed_order, lines):
    total = sum(qty * price for _, qty, price in lines)
    seed_order(items=lines)

    service.create("ORDER-9", checkout_items(*lines), total)

    preference = gateway.created[0]
    amount = sum(item["unit_price"] * item["quantity"] for item in preference["items"])
    assert amount == pytest.approx(total)


def test_preference_expires_thirty_minutes_after_creation(service, gateway, seed_order):
    seed_order()
    service.create("ORDER-9", checkout_items(("Linen shirt", 2, 45000.0), ("Canvas tote", 1, 30000.0)), 120000.0)

    preference = gateway.created[0]
    start = datetime.fromisoformat(preference["expiration_date_from"])
    end = datetime.fromisoformat(preference["expiration_date_to"])
    assert start == CREATED_AT
    assert end - start == timedelta(minutes=30)
    assert preference["expires"] is True


def test_preference_links_back_to_order(service, gateway, store, seed_order):
    seed_order()
    intent = service.create(
        "ORDER-9",
        checkout_items(("Linen shirt", 2, 45000.0), ("Canvas tote", 1, 30000.0)),
        120000.0,
        origin="https://www.shop.test",
    )

    preference = gateway.created[0]
    assert preference["external_reference"] == "ORDER-9"
    assert preference["notification_url"] == "https://api.shop.test/payment-webhook"
    assert preference["binary_mode"] is True
    assert preference["statement_descriptor"] == "SHOP"
    assert preference["back_urls"] == {
        "success": "https://www.shop.test/pago?status=approved&order_id=ORDER-9",
        "failure": "https://www.shop.test/pago?status=rejected&order_id=ORDER-9",
        "pending": "https://www.shop.test/pago?status=pending&order_id=ORDER-9",
    }
    assert preference["payer"]["first_name"] == "Ana"
    assert preference["payer"]["last_name"] == "Maria Rojas"
    assert preference["payer"]["email"] == "ana@example.com"
    assert preference["payer"]["address"]["zip_code"] == "110111"
    assert {item["currency_id"] for item in preference["items"]} == {"COP"}

    assert intent.id == "pref_123"
    assert store.get("ORDER-9").payment_url == intent.redirect_url


def test_back_urls_fall_back_to_storefront_url(service, gateway, seed_order):
    seed_order()
    service.create("ORDER-9", checkout_items(("Linen shirt", 2, 45000.0), ("Canvas tote", 1, 30000.0)), 120000.0)

    assert gateway.created[0]["back_urls"]["success"].startswith("https://shop.test/pago?")


def test_payer_defaults_without_name(store, seed_order):
    seed_order(shipping_address=None, guest_info=None, is_guest=False, user_id="user-1")
    order = store.get("ORDER-9")

    preference = build_preference(
        order,
        checkout_items(("Linen shirt", 1, 10.0)),
        return_base_url="https://shop.test/",
        webhook_url="https://api.shop.test/payment-webhook",
        created_at=CREATED_AT,
    )

    assert preference["payer"]["first_name"] == "Guest"
    assert preference["payer"]["last_name"] == "Customer"
    assert preference["payer"]["email"] == "guest@example.com"
    assert "statement_descriptor" not in preference


@pytest.mark.parametrize("lines, total", [
    ([], 100.0),
    ([("Shirt", 0, 100.0)], 100.0),
    ([("Shirt", 1, -5.0)], -5.0),
    ([("Shirt", 1, 100.0)], 0),
    ([("Shirt", 1, 100.0)], None),
    ([("Shirt", 2, 100.0)], 150.0),
])
def test_rejects_malformed_items(service, gateway, seed_order, lines, total):
    seed_order()

    with pytest.raises(InvalidOrderData):
        service.create("ORDER-9", checkout_items(*lines), total)

    assert gateway.created == []


def test_missing_order(service, gateway):
    with pytest.raises(OrderNotFound):
        service.create("ORDER-404", checkout_items(("Shirt", 1, 100.0)), 100.0)
    assert gateway.created == []


def test_paid_order_is_not_charged_again(service, gateway, seed_order):
    seed_order(payment_status="paid", status="processing")

    with pytest.raises(OrderAlreadyPaid):
        service.create("ORDER-9", checkout_items(("Linen shirt", 2, 45000.0), ("Canvas tote", 1, 30000.0)), 120000.0)
    assert gateway.created == []


def test_missing_public_base_url(gateway, store, seed_order):
    seed_order()
    service = PaymentIntentService(gateway, store, Settings(storefront_url="https://shop.test"))

    with pytest.raises(ConfigurationError, match="PUBLIC_BASE_URL"):
        service.create("ORDER-9", checkout_items(("Linen shirt", 2, 45000.0), ("Canvas tote", 1, 30000.0)), 120000.0)


def test_checkout_must_match_stored_order_total(service, gateway, store, seed_order):
    seed_order()

    with pytest.raises(InvalidOrderData) as excinfo:
        service.create("ORDER-9", checkout_items(("Linen shirt", 1, 1.0)), 1.0)

    assert excinfo.value.details == {"items_sum": 1.0, "order_total": 120000.0}
    assert gateway.created == []
    assert store.get("ORDER-9").payment_url is None


def test_stored_order_without_items_is_rejected(service, gateway, seed_order):
    seed_order(items=(), total=100.0)

    with pytest.raises(InvalidOrderData, match="no items"):
        service.create("ORDER-9", checkout_items(("Shirt", 1, 100.0)), 100.0)
    assert gateway.created == []


def test_stored_order_with_non_positive_total_is_rejected(service, gateway, seed_order):
    seed_order(items=(("Shirt", 1, 100.0),), total=0.0)

    with pytest.raises(InvalidOrderData, match="non-positive total"):
        service.create("ORDER-9", checkout_items(("Shirt", 1, 100.0)), 100.0)
    assert gateway.created == []
