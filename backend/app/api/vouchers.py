from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlmodel import Session, select, col
from typing import List
from app.api.deps import get_db, admin_required, get_identity, get_identity_optional
from app.core.errors import BusinessRuleViolation, NotFound, ValidationError, VoucherError
from app.core.identity import CustomerIdentity
from app.models.user import User
from app.models.voucher import Voucher, VoucherRedemption, VoucherType
from app.schemas.voucher import (
    VoucherResponse,
    VoucherCreate,
    VoucherUpdate,
    VoucherValidateRequest,
    VoucherValidateResponse,
    VoucherRedemptionResponse,
    VoucherUsageListResponse,
    VoucherStatisticsResponse,
)
from app.services.vouchers import (
    validate_voucher,
    get_voucher,
    get_active_vouchers,
    get_voucher_statistics,
)

router = APIRouter(tags=["vouchers"])


# === Public ===

@router.post("/api/vouchers/validate", response_model=VoucherValidateResponse)
def validate_voucher_code(
    data: VoucherValidateRequest,
    db: Session = Depends(get_db),
    identity: CustomerIdentity | None = Depends(get_identity_optional),
):
    """Проверить ваучер для суммы заказа (без резерва)"""
    try:
        quote = validate_voucher(db, data.code, data.order_amount, identity)
    except VoucherError as e:
        return VoucherValidateResponse(
            valid=False,
            code=data.code.strip().upper(),
            error_code=e.kind.value,
            message=e.message,
        )
    return VoucherValidateResponse(
        valid=True,
        code=quote.voucher.code,
        discount_amount=quote.discount_amount,
        final_amount=quote.final_amount,
        message="Voucher applied",
    )


@router.get("/api/vouchers/active", response_model=List[VoucherResponse])
def list_active_vouchers(db: Session = Depends(get_db)):
    """Действующие ваучеры"""
    return get_active_vouchers(db)


@router.get("/api/me/vouchers", response_model=List[VoucherRedemptionResponse])
def my_voucher_history(
    db: Session = Depends(get_db),
    identity: CustomerIdentity = Depends(get_identity),
):
    """Мои использованные ваучеры"""
    stmt = (
        select(VoucherRedemption)
        .where(VoucherRedemption.identity == identity.key)
        .order_by(col(VoucherRedemption.created_at).desc())
    )
    return db.exec(stmt).all()


# === Admin ===

def get_voucher_or_404(db: Session, voucher_id: int) -> Voucher:
    voucher = db.get(Voucher, voucher_id)
    if not voucher:
        raise NotFound("Voucher not found")
    return voucher


@router.get("/api/admin/vouchers", response_model=List[VoucherResponse])
def admin_list_vouchers(
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Список ваучеров (админ)"""
    stmt = select(Voucher).order_by(col(Voucher.id).desc()).offset(skip).limit(limit)
    return db.exec(stmt).all()


@router.get("/api/admin/vouchers/{voucher_id}", response_model=VoucherResponse)
def admin_get_voucher(
    voucher_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Ваучер по ID (админ)"""
    return get_voucher_or_404(db, voucher_id)


@router.post("/api/admin/vouchers", response_model=VoucherResponse, status_code=201)
def admin_create_voucher(
    data: VoucherCreate,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Создать ваучер (админ)"""
    if get_voucher(db, data.code):
        raise BusinessRuleViolation("Voucher code already exists")

    voucher = Voucher(**data.model_dump())
    db.add(voucher)
    db.commit()
    db.refresh(voucher)
    return voucher


@router.patch("/api/admin/vouchers/{voucher_id}", response_model=VoucherResponse)
def admin_update_voucher(
    voucher_id: int,
    data: VoucherUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Обновить ваучер (админ); код и счётчик использований не меняются"""
    voucher = get_voucher_or_404(db, voucher_id)

    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(voucher, key, value)

    if voucher.type == VoucherType.PERCENT and voucher.value > 100:
        db.rollback()
        raise ValidationError("percent value must not exceed 100")
    if voucher.starts_at >= voucher.ends_at:
        db.rollback()
        raise ValidationError("starts_at must be before ends_at")

    db.add(voucher)
    db.commit()
    db.refresh(voucher)
    return voucher


@router.delete("/api/admin/vouchers/{voucher_id}")
def admin_delete_voucher(
    voucher_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Удалить неиспользованный ваучер (использованный - только выключить)"""
    voucher = get_voucher_or_404(db, voucher_id)
    used = db.exec(
        select(VoucherRedemption.id).where(VoucherRedemption.voucher_code == voucher.code)
    ).first()
    if used is not None or voucher.used_count > 0:
        raise BusinessRuleViolation("Voucher has been used, deactivate it instead")

    db.delete(voucher)
    db.commit()
    return {"message": "Voucher deleted"}


@router.get("/api/admin/vouchers/{voucher_id}/usages", response_model=VoucherUsageListResponse)
def admin_voucher_usages(
    voucher_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """История использования ваучера (админ)"""
    voucher = get_voucher_or_404(db, voucher_id)
    where = VoucherRedemption.voucher_code == voucher.code

    total = db.exec(select(func.count(VoucherRedemption.id)).where(where)).one()
    stmt = (
        select(VoucherRedemption)
        .where(where)
        .order_by(col(VoucherRedemption.created_at).desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return VoucherUsageListResponse(
        items=[VoucherRedemptionResponse.model_validate(r) for r in db.exec(stmt).all()],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/api/admin/vouchers/{voucher_id}/statistics", response_model=VoucherStatisticsResponse)
def admin_voucher_statistics(
    voucher_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Статистика ваучера (админ)"""
    return get_voucher_statistics(db, get_voucher_or_404(db, voucher_id))
