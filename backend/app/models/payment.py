from sqlmodel import SQLModel, Field, Relationship, UniqueConstraint
from sqlalchemy import Index, text
from typing import Optional, TYPE_CHECKING
from datetime import datetime
from decimal import Decimal
from enum import Enum
from app.core.clock import utcnow

if TYPE_CHECKING:
    from .order import Order


class PaymentTransactionStatus(str, Enum):
    PENDING = "pending"
    AWAITING_CALLBACK = "awaiting_callback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


ACTIVE_TRANSACTION_STATUSES = (
    PaymentTransactionStatus.PENDING,
    PaymentTransactionStatus.AWAITING_CALLBACK,
)


class PaymentTransaction(SQLModel, table=True):
    __tablename__ = "payment_transactions"
    __table_args__ = (
        UniqueConstraint("gateway", "external_reference"),
        # Не больше одной активной транзакции на заказ (enum хранится по имени)
        Index(
            "uq_payment_transactions_active_order",
            "order_id",
            unique=True,
            sqlite_where=text("status IN ('PENDING', 'AWAITING_CALLBACK')"),
            postgresql_where=text("status IN ('PENDING', 'AWAITING_CALLBACK')"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    gateway: str = Field(index=True)  # cod, momo, vnpay

    requested_amount: Decimal = Field(max_digits=12, decimal_places=2)
    # Ключ сопоставления с шлюзом, назначается до обращения к шлюзу
    external_reference: str = Field(index=True)

    status: PaymentTransactionStatus = Field(default=PaymentTransactionStatus.PENDING)
    payment_url: Optional[str] = None
    failure_reason: Optional[str] = None

    gateway_transaction_id: Optional[str] = None
    gateway_response: Optional[str] = None  # JSON последнего сообщения
    last_message_signature: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    # Relationships
    order: Optional["Order"] = Relationship(back_populates="transactions")

    @property
    def is_terminal(self) -> bool:
        return self.status not in ACTIVE_TRANSACTION_STATUSES
