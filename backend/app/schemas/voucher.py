from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from app.models.voucher import VoucherType, CODE_PATTERN, normalize_code


class VoucherResponse(BaseModel):
    id: int
    code: str
    name: str
    description: Optional[str] = None
    type: VoucherType
    value: Decimal
    max_discount_amount: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    used_count: int
    is_reusable: bool
    starts_at: datetime
    ends_at: datetime
    is_active: bool

    class Config:
        from_attributes = True


class VoucherCreate(BaseModel):
    code: str
    name: str = Field(min_length=1)
    description: Optional[str] = None
    type: VoucherType
    value: Decimal = Field(gt=0)
    max_discount_amount: Optional[Decimal] = Field(default=None, gt=0)
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, gt=0)
    is_reusable: bool = False
    starts_at: datetime
    ends_at: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def check_rules(self):
        self.code = normalize_code(self.code)
        if not CODE_PATTERN.match(self.code):
            raise ValueError("code must be 3-20 letters or digits")
        if self.type == VoucherType.PERCENT and self.value > 100:
            raise ValueError("percent value must not exceed 100")
        if self.starts_at >= self.ends_at:
            raise ValueError("starts_at must be before ends_at")
        return self


class VoucherUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[VoucherType] = None
    value: Optional[Decimal] = Field(default=None, gt=0)
    max_discount_amount: Optional[Decimal] = Field(default=None, gt=0)
    min_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    usage_limit: Optional[int] = Field(default=None, gt=0)
    is_reusable: Optional[bool] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class VoucherValidateRequest(BaseModel):
    code: str
    order_amount: Decimal = Field(ge=0)


class VoucherValidateResponse(BaseModel):
    valid: bool
    code: str
    discount_amount: Decimal = Decimal("0")
    final_amount: Optional[Decimal] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


class VoucherRedemptionResponse(BaseModel):
    id: int
    voucher_code: str
    identity: str
    order_id: int
    discount_amount: Decimal
    original_amount: Decimal
    final_amount: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class VoucherUsageListResponse(BaseModel):
    items: List[VoucherRedemptionResponse]
    total: int
    page: int
    page_size: int


class VoucherStatisticsResponse(BaseModel):
    code: str
    total_used: int
    usage_limit: Optional[int] = None
    total_discount_amount: Decimal
    unique_identities: int
    first_used_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
