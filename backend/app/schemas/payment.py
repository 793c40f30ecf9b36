from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from decimal import Decimal
from app.models.payment import PaymentTransactionStatus


class PaymentTransactionResponse(BaseModel):
    id: int
    order_id: int
    gateway: str
    requested_amount: Decimal
    external_reference: str
    status: PaymentTransactionStatus
    payment_url: Optional[str] = None
    failure_reason: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True


class ExpireResponse(BaseModel):
    transaction_id: int
    expired: bool
    status: PaymentTransactionStatus


class RetryPaymentResponse(BaseModel):
    order_id: int
    transaction_id: int
    redirect_url: Optional[str] = None
