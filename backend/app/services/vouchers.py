"""
Учёт ваучеров.

validate - только чтение. reserve - условный UPDATE счётчика и вставка
записи об использовании в одной транзакции: из N параллельных запросов на
последний слот проходит ровно один, остальные получают USAGE_LIMIT_REACHED.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List
from sqlalchemy import update, delete, or_, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select, col
from app.core.clock import utcnow
from app.core.errors import VoucherError, VoucherErrorKind
from app.core.identity import CustomerIdentity
from app.core.money import to_money, percent_of
from app.models.voucher import Voucher, VoucherType, VoucherRedemption, CODE_PATTERN, normalize_code

logger = logging.getLogger(__name__)


@dataclass
class VoucherQuote:
    voucher: Voucher
    order_amount: Decimal
    discount_amount: Decimal

    @property
    def final_amount(self) -> Decimal:
        return self.order_amount - self.discount_amount


def calculate_voucher_discount(voucher: Voucher, order_amount: Decimal) -> Decimal:
    """Рассчитать скидку по ваучеру"""
    order_amount = to_money(order_amount)
    if voucher.type == VoucherType.PERCENT:
        discount = percent_of(order_amount, voucher.value)
        if voucher.max_discount_amount is not None:
            discount = min(discount, to_money(voucher.max_discount_amount))
        return min(discount, order_amount)
    return min(to_money(voucher.value), order_amount)


def redemption_key(voucher: Voucher, identity: CustomerIdentity, order_id: int) -> str:
    if voucher.is_reusable:
        return f"{identity.key}#{order_id}"
    return identity.key


def get_voucher(db: Session, code: str) -> Voucher | None:
    stmt = select(Voucher).where(Voucher.code == normalize_code(code))
    return db.exec(stmt.execution_options(populate_existing=True)).first()


def has_redeemed(db: Session, code: str, identity: CustomerIdentity) -> bool:
    stmt = select(VoucherRedemption.id).where(
        VoucherRedemption.voucher_code == code,
        VoucherRedemption.identity == identity.key,
    )
    return db.exec(stmt).first() is not None


def _check_code(code: str) -> str:
    code = normalize_code(code)
    if not CODE_PATTERN.match(code):
        raise VoucherError(VoucherErrorKind.MALFORMED)
    return code


def _check_rules(
    db: Session,
    voucher: Voucher,
    order_amount: Decimal,
    identity: CustomerIdentity | None,
    now: datetime,
) -> None:
    if not voucher.is_active:
        raise VoucherError(VoucherErrorKind.INACTIVE)
    if now < voucher.starts_at:
        raise VoucherError(
            VoucherErrorKind.NOT_YET_STARTED,
            f"Voucher is valid from {voucher.starts_at:%d/%m/%Y}",
        )
    if now >= voucher.ends_at:
        raise VoucherError(
            VoucherErrorKind.EXPIRED,
            f"Voucher expired on {voucher.ends_at:%d/%m/%Y}",
        )
    if voucher.min_order_amount is not None and order_amount < voucher.min_order_amount:
        raise VoucherError(
            VoucherErrorKind.BELOW_MINIMUM_ORDER,
            f"Order total must be at least {to_money(voucher.min_order_amount):,}",
        )
    if voucher.usage_limit is not None and voucher.used_count >= voucher.usage_limit:
        raise VoucherError(VoucherErrorKind.USAGE_LIMIT_REACHED)
    if identity is not None and not voucher.is_reusable and has_redeemed(db, voucher.code, identity):
        raise VoucherError(VoucherErrorKind.ALREADY_USED_BY_IDENTITY)


def validate_voucher(
    db: Session,
    code: str,
    order_amount: Decimal,
    identity: CustomerIdentity | None = None,
    now: datetime | None = None,
) -> VoucherQuote:
    """Проверить ваучер без изменений; ошибка - VoucherError с конкретной причиной"""
    now = now or utcnow()
    code = _check_code(code)
    order_amount = to_money(order_amount)

    try:
        voucher = get_voucher(db, code)
        if not voucher:
            raise VoucherError(VoucherErrorKind.NOT_FOUND)
        _check_rules(db, voucher, order_amount, identity, now)
    except SQLAlchemyError:
        logger.exception(f"Error validating voucher {code}")
        raise VoucherError(VoucherErrorKind.SYSTEM_ERROR)

    return VoucherQuote(
        voucher=voucher,
        order_amount=order_amount,
        discount_amount=calculate_voucher_discount(voucher, order_amount),
    )


def reserve_voucher(
    db: Session,
    code: str,
    order_id: int,
    order_amount: Decimal,
    identity: CustomerIdentity,
    now: datetime | None = None,
) -> VoucherQuote:
    """
    Занять одно использование ваучера за заказом.

    Коммитит собственную транзакцию: при успехе счётчик и запись об
    использовании сохраняются вместе, при ошибке откатываются вместе.
    """
    now = now or utcnow()
    code = _check_code(code)
    order_amount = to_money(order_amount)

    stmt = (
        update(Voucher)
        .where(
            Voucher.code == code,
            Voucher.is_active == True,
            Voucher.starts_at <= now,
            Voucher.ends_at > now,
            or_(col(Voucher.min_order_amount).is_(None), Voucher.min_order_amount <= order_amount),
            or_(col(Voucher.usage_limit).is_(None), Voucher.used_count < Voucher.usage_limit),
        )
        .values(used_count=Voucher.used_count + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = db.exec(stmt)

    if result.rowcount != 1:
        db.rollback()
        # Выясняем конкретную причину; если условия уже снова выполняются - слот ушёл другому
        validate_voucher(db, code, order_amount, identity, now)
        raise VoucherError(VoucherErrorKind.USAGE_LIMIT_REACHED)

    voucher = get_voucher(db, code)
    discount = calculate_voucher_discount(voucher, order_amount)

    db.add(VoucherRedemption(
        voucher_code=code,
        identity=identity.key,
        redemption_key=redemption_key(voucher, identity, order_id),
        order_id=order_id,
        discount_amount=discount,
        original_amount=order_amount,
        final_amount=order_amount - discount,
        created_at=now,
    ))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        same_order = db.exec(
            select(VoucherRedemption.id).where(
                VoucherRedemption.voucher_code == code,
                VoucherRedemption.order_id == order_id,
            )
        ).first()
        if same_order is not None:
            raise VoucherError(VoucherErrorKind.ALREADY_APPLIED)
        raise VoucherError(VoucherErrorKind.ALREADY_USED_BY_IDENTITY)

    db.commit()
    logger.info(f"Voucher {code} reserved by {identity.key} for order {order_id}")

    return VoucherQuote(voucher=voucher, order_amount=order_amount, discount_amount=discount)


def release_voucher(db: Session, order_id: int) -> bool:
    """
    Вернуть использование ваучера (компенсация). Без commit.

    Счётчик уменьшается только если запись об использовании действительно
    удалена этим вызовом, поэтому повторный вызов ничего не делает.
    """
    redemption = db.exec(
        select(VoucherRedemption).where(VoucherRedemption.order_id == order_id)
    ).first()
    if not redemption:
        return False

    code = redemption.voucher_code
    deleted = db.exec(
        delete(VoucherRedemption)
        .where(VoucherRedemption.id == redemption.id)
        .execution_options(synchronize_session=False)
    )
    if deleted.rowcount != 1:
        return False

    db.exec(
        update(Voucher)
        .where(Voucher.code == code, Voucher.used_count > 0)
        .values(used_count=Voucher.used_count - 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    logger.info(f"Voucher {code} released from order {order_id}")
    return True


def get_active_vouchers(db: Session, now: datetime | None = None) -> List[Voucher]:
    """Ваучеры, действующие сейчас"""
    now = now or utcnow()
    stmt = select(Voucher).where(
        Voucher.is_active == True,
        Voucher.starts_at <= now,
        Voucher.ends_at > now,
        or_(col(Voucher.usage_limit).is_(None), Voucher.used_count < Voucher.usage_limit),
    ).order_by(Voucher.name)
    return list(db.exec(stmt).all())


def get_voucher_statistics(db: Session, voucher: Voucher) -> dict:
    """Статистика использования ваучера"""
    stmt = select(
        func.count(VoucherRedemption.id),
        func.coalesce(func.sum(VoucherRedemption.discount_amount), 0),
        func.count(func.distinct(VoucherRedemption.identity)),
        func.min(VoucherRedemption.created_at),
        func.max(VoucherRedemption.created_at),
    ).where(VoucherRedemption.voucher_code == voucher.code)
    _, total_discount, unique_identities, first_used, last_used = db.exec(stmt).one()

    return {
        "code": voucher.code,
        "total_used": voucher.used_count,
        "usage_limit": voucher.usage_limit,
        "total_discount_amount": to_money(total_discount),
        "unique_identities": unique_identities,
        "first_used_at": first_used,
        "last_used_at": last_used,
    }
