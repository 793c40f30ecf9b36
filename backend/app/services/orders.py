"""
Заказы: номера, выборки и переходы статуса.

Статус заказа меняется только условным UPDATE из ожидаемых статусов, поэтому
компенсация (возврат ваучера и остатков) выполняется ровно один раз - тем,
кто выиграл переход.
"""
import logging
import secrets
from datetime import datetime
from typing import Iterable, List
from sqlalchemy import update
from sqlmodel import Session, select, col
from app.core.clock import utcnow
from app.core.errors import NotFound
from app.core.identity import CustomerIdentity
from app.models.order import Order, OrderItem, OrderStatus, OPEN_ORDER_STATUSES
from app.services.inventory import release_inventory
from app.services.vouchers import release_voucher

logger = logging.getLogger(__name__)


def generate_order_number(now: datetime | None = None) -> str:
    """Генерация уникального номера заказа"""
    timestamp = (now or utcnow()).strftime("%y%m%d")
    random_part = secrets.token_hex(3).upper()
    return f"SP-{timestamp}-{random_part}"


def owns_order(order: Order, identity: CustomerIdentity) -> bool:
    if identity.user_id is not None:
        return order.user_id == identity.user_id
    return order.guest_id is not None and order.guest_id == identity.guest_id


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id, populate_existing=True)
    if not order:
        raise NotFound("Order not found")
    return order


def get_customer_order(db: Session, order_id: int, identity: CustomerIdentity) -> Order:
    """Заказ покупателя; чужой заказ выглядит как несуществующий"""
    order = get_order(db, order_id)
    if not owns_order(order, identity):
        raise NotFound("Order not found")
    return order


def list_customer_orders(db: Session, identity: CustomerIdentity) -> List[Order]:
    stmt = select(Order)
    if identity.user_id is not None:
        stmt = stmt.where(Order.user_id == identity.user_id)
    else:
        stmt = stmt.where(Order.guest_id == identity.guest_id)
    stmt = stmt.order_by(col(Order.created_at).desc())
    return list(db.exec(stmt).all())


def transition_order(
    db: Session,
    order_id: int,
    from_statuses: Iterable[OrderStatus],
    to_status: OrderStatus,
    now: datetime | None = None,
) -> bool:
    """Условный переход статуса заказа; True - переход выполнен этим вызовом"""
    stmt = (
        update(Order)
        .where(Order.id == order_id, col(Order.status).in_(list(from_statuses)))
        .values(status=to_status, updated_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    return db.exec(stmt).rowcount == 1


def compensate_order(
    db: Session,
    order_id: int,
    to_status: OrderStatus,
    now: datetime | None = None,
) -> bool:
    """
    Закрыть открытый заказ (cancelled / rejected) и вернуть ваучер и остатки.

    Без commit. Повторный вызов ничего не делает: заказ уже не открыт.
    """
    if not transition_order(db, order_id, OPEN_ORDER_STATUSES, to_status, now):
        return False

    release_voucher(db, order_id)
    items = db.exec(select(OrderItem).where(OrderItem.order_id == order_id)).all()
    release_inventory(db, items)

    logger.info(f"Order {order_id} -> {to_status.value}, voucher and stock released")
    return True
