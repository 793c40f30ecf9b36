from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum
import json
from app.core.clock import utcnow


class PromotionType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class PromotionScope(str, Enum):
    ALL = "all"
    PRODUCT = "product"
    CATEGORY = "category"
    BRAND = "brand"


class Promotion(SQLModel, table=True):
    __tablename__ = "promotions"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None

    type: PromotionType
    scope: PromotionScope = Field(default=PromotionScope.ALL)
    priority: int = Field(default=1)  # Меньше = важнее

    # Значение скидки (процент или фикс. сумма)
    value: Decimal = Field(max_digits=12, decimal_places=2)
    # Потолок скидки для процентной акции
    max_discount_amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    # Минимальная сумма заказа для участия
    min_order_amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)

    # id товаров, категорий или брендов по scope (JSON array)
    target_ids: Optional[str] = None

    # Окно действия [starts_at, ends_at)
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=utcnow)

    def target_id_set(self) -> set[int]:
        if not self.target_ids:
            return set()
        try:
            return {int(x) for x in json.loads(self.target_ids)}
        except (ValueError, TypeError):
            return set()
