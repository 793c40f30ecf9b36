from sqlmodel import SQLModel, Field, Relationship
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime
from decimal import Decimal
from enum import Enum
from app.core.clock import utcnow

if TYPE_CHECKING:
    from .user import User
    from .product import Product
    from .payment import PaymentTransaction


class OrderStatus(str, Enum):
    CREATED = "created"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


# Заказ ещё не закрыт - можно оплатить или отменить
OPEN_ORDER_STATUSES = (OrderStatus.CREATED, OrderStatus.AWAITING_PAYMENT)


class PaymentMethod(str, Enum):
    COD = "cod"
    MOMO = "momo"
    VNPAY = "vnpay"


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_number: str = Field(unique=True, index=True)

    # Покупатель: либо user_id, либо guest_id
    user_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    guest_id: Optional[str] = Field(default=None, index=True)

    # Контакты
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    delivery_address: Optional[str] = None

    # Оплата
    payment_method: PaymentMethod

    # Суммы
    original_amount: Decimal = Field(max_digits=12, decimal_places=2)
    promotion_discount_total: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    voucher_code: Optional[str] = None
    voucher_discount_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    total_amount: Decimal = Field(max_digits=12, decimal_places=2)

    status: OrderStatus = Field(default=OrderStatus.CREATED, index=True)
    note: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Relationships
    user: Optional["User"] = Relationship(back_populates="orders")
    items: List["OrderItem"] = Relationship(back_populates="order")
    transactions: List["PaymentTransaction"] = Relationship(back_populates="order")


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    product_id: int = Field(foreign_key="products.id")

    product_name: str  # Сохраняем на момент заказа
    product_sku: Optional[str] = None
    size: Optional[str] = None

    quantity: int
    unit_price: Decimal = Field(max_digits=12, decimal_places=2)  # Цена на момент заказа
    unit_discount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    promotion_id: Optional[int] = None
    total: Decimal = Field(max_digits=12, decimal_places=2)

    # Relationships
    order: Optional["Order"] = Relationship(back_populates="items")
    product: Optional["Product"] = Relationship(back_populates="order_items")
