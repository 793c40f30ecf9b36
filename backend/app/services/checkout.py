"""
Оформление заказа.

Шаги: расчёт цены -> заказ и резерв остатков (одна транзакция БД) ->
резерв ваучера -> создание платежа. Если шаг после создания заказа не
удался, заказ закрывается как rejected, а всё занятое возвращается.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session
from app.core.clock import utcnow
from app.core.errors import BusinessRuleViolation, Conflict, InsufficientStock, TransientIOError, VoucherError
from app.core.identity import CustomerIdentity
from app.models.order import Order, OrderItem, OrderStatus, OPEN_ORDER_STATUSES
from app.models.payment import PaymentTransaction, PaymentTransactionStatus
from app.schemas.checkout import CheckoutRequest
from app.services.inventory import reserve_inventory
from app.services.orders import generate_order_number, get_order, get_customer_order, compensate_order
from app.services.payments import (
    initiate_payment,
    get_active_transaction,
    cancel_transaction,
    transition_transaction,
)
from app.services.pricing import price_order
from app.services.vouchers import reserve_voucher

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    order: Order
    transaction: PaymentTransaction

    @property
    def status(self) -> OrderStatus:
        return self.order.status

    @property
    def redirect_url(self) -> str | None:
        return self.transaction.payment_url


def _reject(db: Session, order: Order, now: datetime) -> None:
    compensate_order(db, order.id, OrderStatus.REJECTED, now)
    db.commit()


def checkout(
    db: Session,
    request: CheckoutRequest,
    identity: CustomerIdentity,
    now: datetime | None = None,
    client_ip: str | None = None,
) -> CheckoutResult:
    """Оформить заказ и начать оплату"""
    now = now or utcnow()
    pricing = price_order(db, request.items, request.voucher_code, identity, now)

    order = Order(
        order_number=generate_order_number(now),
        user_id=identity.user_id,
        guest_id=identity.guest_id,
        customer_name=request.customer_name,
        customer_phone=request.customer_phone,
        customer_email=request.customer_email,
        delivery_address=request.delivery_address,
        payment_method=request.payment_method,
        original_amount=pricing.original_amount,
        promotion_discount_total=pricing.promotion_discount_total,
        voucher_code=pricing.voucher_code,
        voucher_discount_amount=pricing.voucher_discount_amount,
        total_amount=pricing.total_amount,
        status=OrderStatus.CREATED,
        note=request.note,
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    try:
        db.flush()
        for line in pricing.lines:
            db.add(OrderItem(order_id=order.id, **line.model_dump()))
        reserve_inventory(db, pricing.lines)
        db.commit()
    except InsufficientStock:
        db.rollback()
        raise
    except IntegrityError:
        db.rollback()
        logger.exception("Could not create order")
        raise Conflict("Could not create order, please retry")
    db.refresh(order)
    logger.info(f"Order {order.order_number} created for {identity.key}, total {order.total_amount}")

    if pricing.voucher_code:
        try:
            quote = reserve_voucher(
                db,
                pricing.voucher_code,
                order.id,
                pricing.original_amount - pricing.promotion_discount_total,
                identity,
                now,
            )
        except VoucherError as e:
            logger.info(f"Order {order.order_number} rejected: voucher {pricing.voucher_code} {e.kind.value}")
            _reject(db, order, now)
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Voucher {pricing.voucher_code} reservation failed for {order.order_number}")
            _reject(db, order, now)
            raise TransientIOError("Storage is temporarily unavailable, please retry")
        if quote.discount_amount != pricing.voucher_discount_amount:
            logger.warning(f"Voucher {pricing.voucher_code} changed during checkout of {order.order_number}")
            _reject(db, order, now)
            raise Conflict("Voucher terms changed, please review your order")

    tx = initiate_payment(db, order, now, client_ip)
    db.refresh(order)
    return CheckoutResult(order=order, transaction=tx)


def retry_payment(
    db: Session,
    order_id: int,
    identity: CustomerIdentity,
    now: datetime | None = None,
    client_ip: str | None = None,
) -> CheckoutResult:
    """Новая попытка оплаты заказа, ожидающего оплату; старая транзакция отменяется без компенсации"""
    now = now or utcnow()
    order = get_customer_order(db, order_id, identity)
    if order.status != OrderStatus.AWAITING_PAYMENT:
        raise BusinessRuleViolation("Order is not awaiting payment")

    active = get_active_transaction(db, order.id)
    if active and not cancel_transaction(
        db, active.id, "Superseded by a new payment attempt", now, compensate=False
    ):
        raise Conflict("Payment state changed, please retry")

    tx = initiate_payment(db, order, now, client_ip)
    db.refresh(order)
    return CheckoutResult(order=order, transaction=tx)


def cancel_order(
    db: Session,
    order_id: int,
    identity: CustomerIdentity | None = None,
    reason: str = "Cancelled by customer",
    now: datetime | None = None,
) -> Order:
    """
    Отменить открытый заказ (identity=None - администратор).

    Активная транзакция отменяется, ваучер и остатки возвращаются.
    """
    now = now or utcnow()
    order = get_customer_order(db, order_id, identity) if identity else get_order(db, order_id)
    if order.status not in OPEN_ORDER_STATUSES:
        raise BusinessRuleViolation("Order can no longer be cancelled")

    active = get_active_transaction(db, order.id)
    if active:
        transition_transaction(db, active.id, PaymentTransactionStatus.CANCELLED, now, failure_reason=reason)
    if not compensate_order(db, order.id, OrderStatus.CANCELLED, now):
        db.rollback()
        raise Conflict("Order status changed, please retry")
    db.commit()
    db.refresh(order)

    logger.info(f"Order {order.order_number} cancelled: {reason}")
    return order
