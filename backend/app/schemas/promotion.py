from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal
from app.models.promotion import PromotionType, PromotionScope


class PromotionResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    type: PromotionType
    scope: PromotionScope
    priority: int
    value: Decimal
    max_discount_amount: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    target_ids: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool

    class Config:
        from_attributes = True


def _check_value(type_: Optional[PromotionType], value: Optional[Decimal]):
    if value is None:
        return
    if value <= 0:
        raise ValueError("value must be greater than 0")
    if type_ == PromotionType.PERCENT and value > 100:
        raise ValueError("percent value must not exceed 100")


class PromotionCreate(BaseModel):
    name: str
    description: Optional[str] = None
    type: PromotionType
    scope: PromotionScope = PromotionScope.ALL
    priority: int = Field(default=1, ge=1, le=10)
    value: Decimal
    max_discount_amount: Optional[Decimal] = Field(default=None, gt=0)
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    target_ids: Optional[str] = None  # JSON: "[1,2,3]"
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_rules(self):
        _check_value(self.type, self.value)
        if self.starts_at and self.ends_at and self.starts_at >= self.ends_at:
            raise ValueError("starts_at must be before ends_at")
        return self


class PromotionUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[PromotionType] = None
    scope: Optional[PromotionScope] = None
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    value: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = Field(default=None, gt=0)
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    target_ids: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class ProductPriceResponse(BaseModel):
    product_id: int
    name: str
    category_id: Optional[int] = None
    brand_id: Optional[int] = None
    price: Decimal
    final_price: Decimal
    discount_amount: Decimal
    discount_percent: Optional[int] = None
    promotion_id: Optional[int] = None
    promotion_name: Optional[str] = None
