from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ShippingAddress(BaseModel):
    full_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None


class GuestInfo(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class OrderLine(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    product_id: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int
    price_at_time: float
    selected_color: Optional[str] = None

    @property
    def subtotal(self) -> float:
        return self.quantity * self.price_at_time


class OrderRecord(BaseModel):
    """Read-only snapshot of an order and its resolved line items."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    user_id: Optional[str] = None
    total: float
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    payment_url: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    is_guest: bool = False
    guest_info: Optional[GuestInfo] = None
    items: List[OrderLine] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def customer_name(self) -> str:
        if self.guest_info and self.guest_info.full_name:
            return self.guest_info.full_name
        if self.shipping_address and self.shipping_address.full_name:
            return self.shipping_address.full_name
        return ""

    @property
    def customer_phone(self) -> Optional[str]:
        if self.guest_info and self.guest_info.phone:
            return self.guest_info.phone
        return self.shipping_address.phone if self.shipping_address else None


class CheckoutProduct(BaseModel):
    name: str
    price: float


class CheckoutItem(BaseModel):
    product: CheckoutProduct
    quantity: int


class CreatePaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    items: List[CheckoutItem] = Field(default_factory=list)
    total: Optional[float] = None


class NotificationRequest(BaseModel):
    record: OrderRecord
