from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from app.models.order import OrderStatus, PaymentMethod
from app.models.payment import PaymentTransactionStatus


class CheckoutLine(BaseModel):
    product_id: int
    size: Optional[str] = None
    quantity: int = Field(ge=1, le=100)


class PriceRequest(BaseModel):
    items: List[CheckoutLine] = Field(min_length=1)
    voucher_code: Optional[str] = None


class CheckoutRequest(BaseModel):
    items: List[CheckoutLine] = Field(min_length=1)
    voucher_code: Optional[str] = None
    payment_method: PaymentMethod

    customer_name: str = Field(min_length=1)
    customer_phone: str = Field(min_length=5)
    customer_email: Optional[str] = None
    delivery_address: Optional[str] = None
    note: Optional[str] = None

    @field_validator("voucher_code")
    @classmethod
    def blank_voucher_is_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class PricedLine(BaseModel):
    product_id: int
    product_name: str
    product_sku: Optional[str] = None
    size: Optional[str] = None
    quantity: int
    unit_price: Decimal
    unit_discount: Decimal
    promotion_id: Optional[int] = None
    total: Decimal


class PricingResult(BaseModel):
    lines: List[PricedLine]
    original_amount: Decimal
    promotion_discount_total: Decimal
    voucher_code: Optional[str] = None
    voucher_discount_amount: Decimal
    total_amount: Decimal


class CheckoutResponse(BaseModel):
    order_id: int
    order_number: str
    status: OrderStatus
    total_amount: Decimal
    redirect_url: Optional[str] = None
    transaction_id: Optional[int] = None
    transaction_status: Optional[PaymentTransactionStatus] = None
