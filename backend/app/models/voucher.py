from sqlmodel import SQLModel, Field, Relationship, UniqueConstraint
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum
import re
from app.core.clock import utcnow

# Код ваучера: 3-20 латинских букв/цифр, хранится в верхнем регистре
CODE_PATTERN = re.compile(r"^[A-Z0-9]{3,20}$")


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


class VoucherType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class Voucher(SQLModel, table=True):
    __tablename__ = "vouchers"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)  # SUMMER10, WELCOME50K - всегда в верхнем регистре
    name: str
    description: Optional[str] = None

    type: VoucherType
    value: Decimal = Field(max_digits=12, decimal_places=2)
    max_discount_amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    min_order_amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)

    # Лимит использований; used_count меняется только условным UPDATE
    usage_limit: Optional[int] = None
    used_count: int = Field(default=0)

    # False - один раз на пользователя/гостя
    is_reusable: bool = Field(default=False)

    starts_at: datetime
    ends_at: datetime
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Relationships
    redemptions: List["VoucherRedemption"] = Relationship(back_populates="voucher")


class VoucherRedemption(SQLModel, table=True):
    """Факт использования ваучера; уникальность (code, redemption_key) - один раз на покупателя"""
    __tablename__ = "voucher_redemptions"
    __table_args__ = (
        UniqueConstraint("voucher_code", "redemption_key"),
        UniqueConstraint("voucher_code", "order_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    voucher_code: str = Field(foreign_key="vouchers.code", index=True)
    identity: str = Field(index=True)  # user:42 / guest:abc
    redemption_key: str
    order_id: int = Field(foreign_key="orders.id", index=True)

    discount_amount: Decimal = Field(max_digits=12, decimal_places=2)
    original_amount: Decimal = Field(max_digits=12, decimal_places=2)
    final_amount: Decimal = Field(max_digits=12, decimal_places=2)

    created_at: datetime = Field(default_factory=utcnow)

    # Relationships
    voucher: Optional["Voucher"] = Relationship(back_populates="redemptions")
