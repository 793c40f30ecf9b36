from decimal import Decimal
from datetime import datetime
from typing import Optional, List, Sequence
from sqlmodel import Session, select
from app.core.clock import utcnow
from app.core.errors import ValidationError
from app.core.identity import CustomerIdentity
from app.core.money import ZERO, to_money, percent_of, clamp_zero
from app.models.product import Product
from app.models.promotion import Promotion, PromotionType, PromotionScope
from app.schemas.checkout import CheckoutLine, PricedLine, PricingResult
from app.services.inventory import get_product
from app.services.vouchers import validate_voucher


def get_active_promotions(db: Session, now: datetime | None = None) -> List[Promotion]:
    """Получить все активные акции"""
    now = now or utcnow()

    stmt = select(Promotion).where(
        Promotion.is_active == True,
        (Promotion.starts_at == None) | (Promotion.starts_at <= now),
        (Promotion.ends_at == None) | (Promotion.ends_at > now),
    )

    return list(db.exec(stmt).all())


def is_promotion_live(promo: Promotion, now: datetime) -> bool:
    """Акция включена и now попадает в [starts_at, ends_at)"""
    if not promo.is_active:
        return False
    if promo.starts_at and now < promo.starts_at:
        return False
    if promo.ends_at and now >= promo.ends_at:
        return False
    return True


def promotion_applies_to(promo: Promotion, product: Product) -> bool:
    """Товар попадает в scope акции: весь каталог, товар, категория или бренд"""
    if promo.scope == PromotionScope.ALL:
        return True
    if promo.scope == PromotionScope.PRODUCT:
        target = product.id
    elif promo.scope == PromotionScope.CATEGORY:
        target = product.category_id
    else:
        target = product.brand_id
    return target is not None and target in promo.target_id_set()


def promotion_discount(price: Decimal, promo: Promotion) -> Decimal:
    """Скидка с единицы товара по акции"""
    price = to_money(price)
    if promo.type == PromotionType.PERCENT:
        discount = percent_of(price, promo.value)
        if promo.max_discount_amount is not None:
            discount = min(discount, to_money(promo.max_discount_amount))
    else:
        discount = to_money(promo.value)
    return min(discount, price)


def resolve_promotion(
    product: Product,
    promotions: Sequence[Promotion],
    candidate_order_total: Decimal,
    now: datetime,
) -> Optional[Promotion]:
    """
    Выбрать лучшую акцию по правилу:
    1. Максимальная скидка на цену товара
    2. При равенстве - меньший priority
    3. Затем - более ранний starts_at
    """
    candidates = []
    for promo in promotions:
        if not is_promotion_live(promo, now) or not promotion_applies_to(promo, product):
            continue
        if promo.min_order_amount is not None and candidate_order_total < promo.min_order_amount:
            continue
        candidates.append(promo)

    if not candidates:
        return None

    return min(
        candidates,
        key=lambda p: (
            -promotion_discount(product.price, p),
            p.priority,
            p.starts_at or datetime.min,
            p.id or 0,
        ),
    )


def price_order(
    db: Session,
    lines: Sequence[CheckoutLine],
    voucher_code: str | None = None,
    identity: CustomerIdentity | None = None,
    now: datetime | None = None,
) -> PricingResult:
    """
    Расчёт суммы заказа без побочных эффектов.

    Акции квалифицируются по сумме до скидок, ваучер - по сумме после акций
    (только validate, резерв делается после создания заказа).
    """
    if not lines:
        raise ValidationError("Cart is empty")
    now = now or utcnow()

    products = [get_product(db, line.product_id) for line in lines]
    original_amount = sum(
        (to_money(product.price) * line.quantity for product, line in zip(products, lines)),
        ZERO,
    )

    promotions = get_active_promotions(db, now)

    priced_lines = []
    promotion_discount_total = ZERO
    for product, line in zip(products, lines):
        unit_price = to_money(product.price)
        promo = resolve_promotion(product, promotions, original_amount, now)
        unit_discount = promotion_discount(unit_price, promo) if promo else ZERO

        promotion_discount_total += unit_discount * line.quantity
        priced_lines.append(PricedLine(
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku,
            size=line.size,
            quantity=line.quantity,
            unit_price=unit_price,
            unit_discount=unit_discount,
            promotion_id=promo.id if promo else None,
            total=(unit_price - unit_discount) * line.quantity,
        ))

    voucher_discount_amount = ZERO
    normalized_code = None
    if voucher_code:
        quote = validate_voucher(
            db, voucher_code, original_amount - promotion_discount_total, identity, now
        )
        voucher_discount_amount = quote.discount_amount
        normalized_code = quote.voucher.code

    total_amount = clamp_zero(original_amount - promotion_discount_total - voucher_discount_amount)

    return PricingResult(
        lines=priced_lines,
        original_amount=original_amount,
        promotion_discount_total=promotion_discount_total,
        voucher_code=normalized_code,
        voucher_discount_amount=voucher_discount_amount,
        total_amount=total_amount,
    )


def build_product_price(product: Product, promotions: Sequence[Promotion], now: datetime | None = None) -> dict:
    """Цена товара для витрины - тот же выбор акции, что и при оформлении"""
    now = now or utcnow()
    price = to_money(product.price)
    promo = resolve_promotion(product, promotions, price, now)
    discount = promotion_discount(price, promo) if promo else ZERO

    discount_percent = None
    if discount and price:
        discount_percent = int(discount / price * 100)

    return {
        "product_id": product.id,
        "name": product.name,
        "category_id": product.category_id,
        "brand_id": product.brand_id,
        "price": price,
        "final_price": price - discount,
        "discount_amount": discount,
        "discount_percent": discount_percent,
        "promotion_id": promo.id if promo else None,
        "promotion_name": promo.name if promo else None,
    }
