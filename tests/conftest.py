import os

os.environ["DATABASE_URL"] = "sqlite:///./test_app.db"
os.environ["PUBLIC_BASE_URL"] = "https://api.shop.test"
os.environ["STOREFRONT_URL"] = "https://shop.test"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["PAYMENT_CURRENCY"] = "COP"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import storefront.auth
import storefront.dependencies
from storefront.database import Base
from storefront.errors import UpstreamError
from storefront.gateway import GatewayIntent, GatewayMerchantOrder, GatewayPayment, PaymentGateway
from storefront.main import app as fastapi_app
from storefront.models import Order, OrderItem, Product
from storefront.notifications import NotificationChannel, NotificationTrigger
from storefront.order_store import OrderStore

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


class FakeGateway(PaymentGateway):
    def __init__(self):
        self.payments = {}
        self.merchant_orders = {}
        self.created = []
        self.lookups = []

    def create_intent(self, request):
        self.created.append(request)
        return GatewayIntent(
            id="pref_123",
            redirect_url="https://gw.test/checkout?pref_id=pref_123",
            sandbox_redirect_url="https://sandbox.gw.test/checkout?pref_id=pref_123",
        )

    def get_payment(self, payment_id):
        self.lookups.append(("payment", payment_id))
        if payment_id not in self.payments:
            raise UpstreamError(f"Gateway could not fetch payment {payment_id}: HTTP 404")
        return self.payments[payment_id]

    def get_merchant_order(self, merchant_order_id):
        self.lookups.append(("merchant_order", merchant_order_id))
        if merchant_order_id not in self.merchant_orders:
            raise UpstreamError(f"Gateway could not fetch merchant order {merchant_order_id}: HTTP 404")
        return self.merchant_orders[merchant_order_id]

    def add_payment(self, payment_id, status, external_reference):
        self.payments[payment_id] = GatewayPayment(status=status, external_reference=external_reference)

    def add_merchant_order(self, merchant_order_id, external_reference, statuses):
        self.merchant_orders[merchant_order_id] = GatewayMerchantOrder(
            external_reference=external_reference,
            payments=[GatewayPayment(status=s, external_reference=None) for s in statuses],
        )


class FakeChannel(NotificationChannel):
    def __init__(self):
        self.sent = []
        self.fail_with = None

    def send(self, text):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(text)
        return f"SM{len(self.sent):04d}"

    def describe(self):
        return {"channel": "fake"}


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def store():
    return OrderStore(TestingSessionLocal)


@pytest.fixture
def notifier(channel, store):
    return NotificationTrigger(lambda: channel, store)


@pytest.fixture
def client(monkeypatch, gateway, channel):
    monkeypatch.setattr(storefront.dependencies, "SessionLocal", TestingSessionLocal)
    fastapi_app.dependency_overrides[storefront.dependencies.get_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[storefront.dependencies.get_channel_provider] = lambda: lambda: channel
    fastapi_app.dependency_overrides[storefront.auth.verify_token] = lambda: True
    with TestClient(fastapi_app) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def seed_order():
    """Insert an order with line items and return its id."""

    def _seed(order_id="ORDER-9", items=(("Linen shirt", 2, 45000.0), ("Canvas tote", 1, 30000.0)), **fields):
        db = TestingSessionLocal()
        values = {
            "id": order_id,
            "total": sum(qty * price for _, qty, price in items),
            "status": "pending",
            "payment_status": "pending",
            "payment_method": "mercadopago",
            "is_guest": True,
            "shipping_address": {
                "full_name": "Ana Maria Rojas",
                "address": "Calle 10 # 5-20",
                "city": "Bogota",
                "postal_code": "110111",
                "country": "Colombia",
                "phone": "+573001112233",
            },
            "guest_info": {
                "full_name": "Ana Maria Rojas",
                "email": "ana@example.com",
                "phone": "+573001112233",
            },
        }
        values.update(fields)
        order = Order(**values)
        db.add(order)
        for position, (name, qty, price) in enumerate(items):
            product = Product(name=name, price=price)
            db.add(product)
            db.flush()
            db.add(OrderItem(
                order_id=order_id,
                product_id=product.id,
                position=position,
                quantity=qty,
                price_at_time=price,
            ))
        db.commit()
        db.close()
        return order_id

    return _seed

