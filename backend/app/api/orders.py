from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlmodel import Session, select, col
from typing import Optional, List
from datetime import datetime, date
from app.api.deps import get_db, get_identity, admin_required
from app.core.identity import CustomerIdentity
from app.models.user import User
from app.models.order import Order, OrderStatus
from app.schemas.order import OrderResponse, OrderListResponse, OrderCancelRequest
from app.services.checkout import cancel_order
from app.services.orders import get_order, get_customer_order, list_customer_orders

router = APIRouter(tags=["orders"])


def build_order_response(order: Order) -> OrderResponse:
    return OrderResponse.model_validate(order)


# === Покупатель: мои заказы ===

@router.get("/api/me/orders", response_model=List[OrderResponse])
def get_my_orders(
    db: Session = Depends(get_db),
    identity: CustomerIdentity = Depends(get_identity)
):
    """Список моих заказов"""
    return [build_order_response(order) for order in list_customer_orders(db, identity)]


@router.get("/api/me/orders/{order_id}", response_model=OrderResponse)
def get_my_order(
    order_id: int,
    db: Session = Depends(get_db),
    identity: CustomerIdentity = Depends(get_identity)
):
    """Детали моего заказа"""
    return build_order_response(get_customer_order(db, order_id, identity))


@router.post("/api/me/orders/{order_id}/cancel", response_model=OrderResponse)
def cancel_my_order(
    order_id: int,
    data: OrderCancelRequest | None = None,
    db: Session = Depends(get_db),
    identity: CustomerIdentity = Depends(get_identity)
):
    """Отменить мой заказ (пока он не оплачен)"""
    reason = (data.note if data and data.note else None) or "Cancelled by customer"
    return build_order_response(cancel_order(db, order_id, identity, reason))


# === Admin: управление заказами ===

@router.get("/api/admin/orders", response_model=OrderListResponse)
def admin_list_orders(
    status: Optional[OrderStatus] = Query(None),
    phone: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Список заказов с фильтрами (админ)"""
    filters = []

    if status:
        filters.append(Order.status == status)

    if phone:
        # Поиск по телефону или номеру заказа
        filters.append(
            (col(Order.customer_phone).contains(phone)) |
            (col(Order.order_number).contains(phone))
        )

    if date_from:
        filters.append(Order.created_at >= datetime.combine(date_from, datetime.min.time()))

    if date_to:
        filters.append(Order.created_at <= datetime.combine(date_to, datetime.max.time()))

    total = db.exec(select(func.count(Order.id)).where(*filters)).one()

    stmt = (
        select(Order)
        .where(*filters)
        .order_by(col(Order.created_at).desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    return OrderListResponse(
        items=[build_order_response(order) for order in db.exec(stmt).all()],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/api/admin/orders/{order_id}", response_model=OrderResponse)
def admin_get_order(
    order_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(admin_required)
):
    """Детали заказа (админ)"""
    return build_order_response(get_order(db, order_id))


@router.post("/api/admin/orders/{order_id}/cancel", response_model=OrderResponse)
def admin_cancel_order(
    order_id: int,
    data: OrderCancelRequest | None = None,
    db: Session = Depends(get_db),
    admin: User = Depends(admin_required)
):
    """Отменить заказ (админ): транзакция отменяется, ваучер и остатки возвращаются"""
    reason = (data.note if data and data.note else None) or f"Cancelled by admin {admin.email}"
    return build_order_response(cancel_order(db, order_id, None, reason))
