from fastapi import APIRouter, Depends
from sqlmodel import Session, select, col
from typing import List
from app.api.deps import get_db, admin_required
from app.core.errors import NotFound, ValidationError
from app.models.user import User
from app.models.promotion import Promotion, PromotionType
from app.schemas.promotion import PromotionResponse, PromotionCreate, PromotionUpdate
from app.services.pricing import get_active_promotions

router = APIRouter(prefix="/api/promotions", tags=["promotions"])


# === Public ===

@router.get("/active", response_model=List[PromotionResponse])
def list_active_promotions(db: Session = Depends(get_db)):
    """Список активных акций (публичный)"""
    promotions = get_active_promotions(db)
    return sorted(promotions, key=lambda p: (p.priority, p.id))


# === Admin CRUD ===

def get_promotion_or_404(db: Session, promotion_id: int) -> Promotion:
    promo = db.get(Promotion, promotion_id)
    if not promo:
        raise NotFound("Promotion not found")
    return promo


@router.get("", response_model=List[PromotionResponse])
def list_promotions(
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Список всех акций (админ)"""
    stmt = select(Promotion).order_by(col(Promotion.id).desc()).offset(skip).limit(limit)
    return db.exec(stmt).all()


@router.get("/{promotion_id}", response_model=PromotionResponse)
def get_promotion(
    promotion_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Получить акцию по ID (админ)"""
    return get_promotion_or_404(db, promotion_id)


@router.post("", response_model=PromotionResponse, status_code=201)
def create_promotion(
    data: PromotionCreate,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Создать акцию (админ)"""
    promo = Promotion(**data.model_dump())
    db.add(promo)
    db.commit()
    db.refresh(promo)
    return promo


@router.patch("/{promotion_id}", response_model=PromotionResponse)
def update_promotion(
    promotion_id: int,
    data: PromotionUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Обновить акцию (админ)"""
    promo = get_promotion_or_404(db, promotion_id)

    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(promo, key, value)

    # Проверяем итоговое состояние, а не только присланные поля
    if promo.value <= 0 or (promo.type == PromotionType.PERCENT and promo.value > 100):
        db.rollback()
        raise ValidationError("Invalid promotion value")
    if promo.starts_at and promo.ends_at and promo.starts_at >= promo.ends_at:
        db.rollback()
        raise ValidationError("starts_at must be before ends_at")

    db.add(promo)
    db.commit()
    db.refresh(promo)
    return promo


@router.delete("/{promotion_id}")
def delete_promotion(
    promotion_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Удалить акцию (админ)"""
    promo = get_promotion_or_404(db, promotion_id)
    db.delete(promo)
    db.commit()
    return {"message": "Promotion deleted"}
