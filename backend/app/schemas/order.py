from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from app.models.order import OrderStatus, PaymentMethod


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_sku: Optional[str] = None
    size: Optional[str] = None
    quantity: int
    unit_price: Decimal
    unit_discount: Decimal
    promotion_id: Optional[int] = None
    total: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str

    user_id: Optional[int] = None
    guest_id: Optional[str] = None

    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    delivery_address: Optional[str] = None

    payment_method: PaymentMethod

    original_amount: Decimal
    promotion_discount_total: Decimal
    voucher_code: Optional[str] = None
    voucher_discount_amount: Decimal
    total_amount: Decimal

    status: OrderStatus
    note: Optional[str] = None

    created_at: datetime
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int


class OrderCancelRequest(BaseModel):
    note: Optional[str] = None
