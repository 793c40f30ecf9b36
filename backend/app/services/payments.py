"""
Платёжные транзакции и сверка с сообщениями шлюзов.

Каждое сообщение шлюза (IPN или возврат браузера) проходит через
handle_gateway_message. Статус транзакции меняется только условным UPDATE
из активных статусов: из двух одновременных сообщений одно применяется,
второе получает duplicate. Переход заказа и компенсация выполняются в той же
транзакции БД, что и переход платежа.
"""
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, select, col
from app.core.clock import utcnow
from app.core.config import settings
from app.core.errors import (
    Conflict,
    ExternalIntegrityError,
    GatewayError,
    NotFound,
    TransientIOError,
    ValidationError,
)
from app.core.money import to_money
from app.models.order import Order, OrderStatus
from app.models.payment import (
    PaymentTransaction,
    PaymentTransactionStatus,
    ACTIVE_TRANSACTION_STATUSES,
)
from app.services.gateways import get_gateway, GatewayResult, ParsedMessage
from app.services.orders import transition_order, compensate_order

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    UNKNOWN = "unknown"
    PENDING = "pending"
    AMOUNT_MISMATCH = "amount_mismatch"


@dataclass
class ReconcileResult:
    outcome: ReconcileOutcome
    transaction: Optional[PaymentTransaction] = None
    message: str = ""

    @property
    def accepted(self) -> bool:
        """Сообщение подлинное и относится к известной транзакции"""
        return self.outcome not in (ReconcileOutcome.REJECTED, ReconcileOutcome.UNKNOWN)


def generate_reference(now: datetime | None = None) -> str:
    """Ссылка для шлюза: только буквы и цифры (VNPay TxnRef / MoMo orderId)"""
    return f"{(now or utcnow()):%y%m%d%H%M%S}{secrets.token_hex(4).upper()}"


def get_transaction(db: Session, transaction_id: int) -> PaymentTransaction:
    tx = db.get(PaymentTransaction, transaction_id, populate_existing=True)
    if not tx:
        raise NotFound("Payment transaction not found")
    return tx


def find_transaction(db: Session, gateway: str, external_reference: str) -> PaymentTransaction | None:
    stmt = select(PaymentTransaction).where(
        PaymentTransaction.gateway == gateway,
        PaymentTransaction.external_reference == external_reference,
    )
    return db.exec(stmt.execution_options(populate_existing=True)).first()


def get_active_transaction(db: Session, order_id: int) -> PaymentTransaction | None:
    stmt = select(PaymentTransaction).where(
        PaymentTransaction.order_id == order_id,
        col(PaymentTransaction.status).in_(ACTIVE_TRANSACTION_STATUSES),
    )
    return db.exec(stmt.execution_options(populate_existing=True)).first()


def transition_transaction(
    db: Session,
    transaction_id: int,
    to_status: PaymentTransactionStatus,
    now: datetime,
    from_statuses: Iterable[PaymentTransactionStatus] = ACTIVE_TRANSACTION_STATUSES,
    **values: Any,
) -> bool:
    """Условный переход статуса транзакции; True - переход выполнен этим вызовом"""
    stmt = (
        update(PaymentTransaction)
        .where(
            PaymentTransaction.id == transaction_id,
            col(PaymentTransaction.status).in_(list(from_statuses)),
        )
        .values(status=to_status, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    return db.exec(stmt).rowcount == 1


def _commit(db: Session) -> None:
    try:
        db.commit()
    except OperationalError:
        db.rollback()
        logger.exception("Database unavailable while saving payment state")
        raise TransientIOError("Storage is temporarily unavailable")


# === Создание платежа ===

def initiate_payment(
    db: Session,
    order: Order,
    now: datetime | None = None,
    client_ip: str | None = None,
) -> PaymentTransaction:
    """
    Создать транзакцию и обратиться к шлюзу.

    Транзакция pending со ссылкой сохраняется до вызова шлюза, чтобы любое
    сообщение шлюза нашло её. COD подтверждается сразу (заказ paid), для
    шлюзов с редиректом транзакция ждёт callback, заказ - awaiting_payment.
    Ошибка шлюза: транзакция failed, заказ rejected, ваучер и остатки
    возвращаются, ошибка пробрасывается.
    """
    now = now or utcnow()
    gateway = get_gateway(order.payment_method.value)

    tx = PaymentTransaction(
        order_id=order.id,
        gateway=gateway.name,
        requested_amount=to_money(order.total_amount),
        external_reference=generate_reference(now),
        status=PaymentTransactionStatus.PENDING,
        created_at=now,
        updated_at=now,
        expires_at=now + settings.payment_timeout,
    )
    db.add(tx)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Order already has an active payment")
    db.refresh(tx)

    try:
        initiation = gateway.initiate(order, tx.requested_amount, tx.external_reference, now, client_ip)
    except (TransientIOError, GatewayError) as e:
        logger.warning(f"Payment {tx.external_reference} for order {order.order_number} failed: {e.message}")
        transition_transaction(db, tx.id, PaymentTransactionStatus.FAILED, now, failure_reason=e.message)
        compensate_order(db, order.id, OrderStatus.REJECTED, now)
        _commit(db)
        raise

    if gateway.redirects:
        moved = transition_transaction(
            db,
            tx.id,
            PaymentTransactionStatus.AWAITING_CALLBACK,
            now,
            from_statuses=(PaymentTransactionStatus.PENDING,),
            payment_url=initiation.redirect_url,
            expires_at=initiation.expires_at,
        )
        if moved:
            transition_order(db, order.id, (OrderStatus.CREATED,), OrderStatus.AWAITING_PAYMENT, now)
        logger.info(f"Payment {tx.external_reference} awaiting {gateway.name} callback")
    else:
        transition_transaction(
            db,
            tx.id,
            PaymentTransactionStatus.SUCCEEDED,
            now,
            expires_at=initiation.expires_at,
        )
        transition_order(db, order.id, (OrderStatus.CREATED,), OrderStatus.PAID, now)
        logger.info(f"Order {order.order_number} confirmed with {gateway.name}")

    _commit(db)
    db.refresh(tx)
    return tx


# === Сверка сообщений шлюза ===

def _message_values(parsed: ParsedMessage) -> dict:
    values = {
        "gateway_response": json.dumps(parsed.raw_fields, ensure_ascii=False),
        "last_message_signature": parsed.signature,
    }
    if parsed.gateway_transaction_id:
        values["gateway_transaction_id"] = parsed.gateway_transaction_id
    return values


def _fail(
    db: Session,
    tx: PaymentTransaction,
    reason: str,
    parsed: ParsedMessage,
    now: datetime,
) -> bool:
    if not transition_transaction(
        db, tx.id, PaymentTransactionStatus.FAILED, now,
        failure_reason=reason, **_message_values(parsed),
    ):
        db.rollback()
        return False
    compensate_order(db, tx.order_id, OrderStatus.REJECTED, now)
    _commit(db)
    return True


def handle_gateway_message(
    db: Session,
    gateway_name: str,
    fields: Mapping[str, Any],
    now: datetime | None = None,
) -> ReconcileResult:
    """Применить сообщение шлюза к транзакции (идемпотентно)"""
    now = now or utcnow()
    gateway = get_gateway(gateway_name)

    try:
        parsed = gateway.parse_inbound(fields)
    except (ExternalIntegrityError, ValidationError) as e:
        logger.warning(f"Dropped {gateway.name} message: {e.message}")
        return ReconcileResult(ReconcileOutcome.REJECTED, message=e.message)

    tx = find_transaction(db, gateway.name, parsed.external_reference)
    if not tx:
        logger.warning(f"{gateway.name} message for unknown reference {parsed.external_reference}")
        return ReconcileResult(ReconcileOutcome.UNKNOWN, message="Unknown transaction")

    if tx.is_terminal or tx.last_message_signature == parsed.signature:
        logger.info(f"Duplicate {gateway.name} message for {tx.external_reference} ({tx.status.value})")
        return ReconcileResult(ReconcileOutcome.DUPLICATE, tx, tx.failure_reason or gateway.describe(parsed))

    if parsed.reported_amount != to_money(tx.requested_amount):
        reason = (
            f"Amount mismatch: requested {to_money(tx.requested_amount)}, "
            f"reported {parsed.reported_amount}"
        )
        logger.warning(f"Payment {tx.external_reference}: {reason}")
        applied = _fail(db, tx, reason, parsed, now)
        db.refresh(tx)
        outcome = ReconcileOutcome.AMOUNT_MISMATCH if applied else ReconcileOutcome.DUPLICATE
        return ReconcileResult(outcome, tx, reason)

    if parsed.result == GatewayResult.PENDING:
        stmt = (
            update(PaymentTransaction)
            .where(
                PaymentTransaction.id == tx.id,
                col(PaymentTransaction.status).in_(ACTIVE_TRANSACTION_STATUSES),
            )
            .values(updated_at=now, **_message_values(parsed))
            .execution_options(synchronize_session=False)
        )
        db.exec(stmt)
        _commit(db)
        db.refresh(tx)
        return ReconcileResult(ReconcileOutcome.PENDING, tx, gateway.describe(parsed))

    if parsed.result == GatewayResult.SUCCESS:
        if not transition_transaction(
            db, tx.id, PaymentTransactionStatus.SUCCEEDED, now, **_message_values(parsed)
        ):
            db.rollback()
            db.refresh(tx)
            return ReconcileResult(ReconcileOutcome.DUPLICATE, tx, gateway.describe(parsed))
        if not transition_order(db, tx.order_id, (OrderStatus.CREATED, OrderStatus.AWAITING_PAYMENT), OrderStatus.PAID, now):
            logger.error(f"Payment {tx.external_reference} succeeded but order {tx.order_id} is closed, refund required")
        _commit(db)
        db.refresh(tx)
        logger.info(f"Payment {tx.external_reference} succeeded, order {tx.order_id} paid")
        return ReconcileResult(ReconcileOutcome.APPLIED, tx, gateway.describe(parsed))

    message = gateway.describe(parsed)
    applied = _fail(db, tx, message, parsed, now)
    db.refresh(tx)
    if applied:
        logger.info(f"Payment {tx.external_reference} failed: {parsed.result_code} {message}")
    outcome = ReconcileOutcome.APPLIED if applied else ReconcileOutcome.DUPLICATE
    return ReconcileResult(outcome, tx, message)


# === Истечение и отмена ===

def _close(
    db: Session,
    transaction_id: int,
    to_status: PaymentTransactionStatus,
    reason: str,
    now: datetime,
    compensate: bool = True,
) -> bool:
    tx = get_transaction(db, transaction_id)
    if not transition_transaction(db, tx.id, to_status, now, failure_reason=reason):
        db.rollback()
        return False
    if compensate:
        compensate_order(db, tx.order_id, OrderStatus.CANCELLED, now)
    _commit(db)
    logger.info(f"Payment {tx.external_reference} -> {to_status.value}: {reason}")
    return True


def expire_transaction(db: Session, transaction_id: int, now: datetime | None = None) -> bool:
    """Истечь транзакцию; False - она уже завершена"""
    return _close(
        db, transaction_id, PaymentTransactionStatus.EXPIRED, "Payment window expired", now or utcnow()
    )


def cancel_transaction(
    db: Session,
    transaction_id: int,
    reason: str = "Cancelled",
    now: datetime | None = None,
    compensate: bool = True,
) -> bool:
    """Отменить транзакцию; compensate=False - заказ остаётся открытым (новая попытка оплаты)"""
    return _close(
        db, transaction_id, PaymentTransactionStatus.CANCELLED, reason, now or utcnow(), compensate
    )


def sweep_expired_transactions(db: Session, now: datetime | None = None) -> int:
    """Истечь все активные транзакции с прошедшим expires_at"""
    now = now or utcnow()
    stmt = select(PaymentTransaction.id).where(
        col(PaymentTransaction.status).in_(ACTIVE_TRANSACTION_STATUSES),
        PaymentTransaction.expires_at < now,
    )
    expired = 0
    for transaction_id in db.exec(stmt).all():
        if expire_transaction(db, transaction_id, now):
            expired += 1
    if expired:
        logger.info(f"Expired {expired} payment transactions")
    return expired
