"""
Seed-скрипт: таблицы, админ из ENV и демо-каталог (товары, остатки, акция, ваучер)
Запуск: python -m app.scripts.seed_catalog
"""
import json
from datetime import timedelta
from decimal import Decimal
from sqlmodel import Session, select, or_
from app.core.clock import utcnow
from app.core.config import settings
from app.db.session import engine, create_db_and_tables
from app.models.user import User, UserRole
from app.models.category import Category, Brand
from app.models.product import Product, Inventory
from app.models.promotion import Promotion, PromotionType, PromotionScope
from app.models.voucher import Voucher, VoucherType

DEMO_PRODUCTS = [
    # name, slug, sku, category, brand, price, {size: quantity}
    ("Air Runner 2", "air-runner-2", "AR2-001", "Running", "Swift", Decimal("1000000"), {"40": 10, "41": 10, "42": 5}),
    ("Court Classic", "court-classic", "CC-002", "Lifestyle", "Baseline", Decimal("750000"), {"39": 8, "40": 8, "41": 3}),
    ("Trail Blazer", "trail-blazer", "TB-003", "Running", "Summit", Decimal("1450000"), {"42": 4, "43": 4}),
    ("Canvas Low", "canvas-low", "CL-004", "Lifestyle", "Street", Decimal("450000"), {"38": 12, "39": 12, "40": 12}),
]


def slugify(name: str) -> str:
    return name.lower().replace(" ", "-")


def get_or_create(session: Session, model, name: str):
    slug = slugify(name)
    item = session.exec(select(model).where(model.slug == slug)).first()
    if not item:
        item = model(name=name, slug=slug)
        session.add(item)
        session.flush()
        print(f"{model.__name__} created: {name}")
    return item


def seed_admin(session: Session):
    """Создание админа если не существует"""
    admin_email = settings.ADMIN_EMAIL
    admin_phone = settings.ADMIN_PHONE

    if not admin_email and not admin_phone:
        print("ADMIN_EMAIL / ADMIN_PHONE not set, skipping admin seed")
        return

    conditions = []
    if admin_email:
        conditions.append(User.email == admin_email)
    if admin_phone:
        conditions.append(User.phone == admin_phone)
    existing = session.exec(select(User).where(or_(*conditions))).first()

    if existing:
        print(f"Admin already exists: {existing.email or existing.phone}")
        return

    session.add(User(
        email=admin_email,
        phone=admin_phone,
        first_name="Admin",
        role=UserRole.ADMIN,
        is_active=True
    ))
    session.commit()
    print(f"Admin created: {admin_email or admin_phone}")


def seed_products(session: Session):
    """Демо-категории, бренды и товары с остатками по размерам"""
    for name, slug, sku, category_name, brand_name, price, sizes in DEMO_PRODUCTS:
        if session.exec(select(Product).where(Product.slug == slug)).first():
            continue

        category = get_or_create(session, Category, category_name)
        brand = get_or_create(session, Brand, brand_name)
        product = Product(
            name=name, slug=slug, sku=sku, category_id=category.id, brand_id=brand.id, price=price
        )
        session.add(product)
        session.flush()
        for size, quantity in sizes.items():
            session.add(Inventory(product_id=product.id, size=size, quantity=quantity))
        print(f"Product created: {name}")

    session.commit()


def seed_promotions(session: Session):
    """Акции (сезонная и по категории) и ваучер SUMMER10"""
    now = utcnow()

    if not session.exec(select(Promotion).where(Promotion.name == "Season sale")).first():
        session.add(Promotion(
            name="Season sale",
            type=PromotionType.PERCENT,
            scope=PromotionScope.ALL,
            priority=2,
            value=Decimal("10"),
            starts_at=now - timedelta(days=1),
            ends_at=now + timedelta(days=30),
        ))
        print("Promotion created: Season sale")

    running = session.exec(select(Category).where(Category.slug == "running")).first()
    if running and not session.exec(select(Promotion).where(Promotion.name == "Running week")).first():
        session.add(Promotion(
            name="Running week",
            type=PromotionType.FIXED,
            scope=PromotionScope.CATEGORY,
            priority=1,
            value=Decimal("150000"),
            target_ids=json.dumps([running.id]),
            starts_at=now - timedelta(days=1),
            ends_at=now + timedelta(days=7),
        ))
        print("Promotion created: Running week")

    if not session.exec(select(Voucher).where(Voucher.code == "SUMMER10")).first():
        session.add(Voucher(
            code="SUMMER10",
            name="Summer 10%",
            type=VoucherType.PERCENT,
            value=Decimal("10"),
            max_discount_amount=Decimal("30000"),
            min_order_amount=Decimal("200000"),
            usage_limit=100,
            starts_at=now - timedelta(days=1),
            ends_at=now + timedelta(days=60),
        ))
        print("Voucher created: SUMMER10")

    session.commit()


def main():
    print("Creating tables...")
    create_db_and_tables()
    with Session(engine) as session:
        print("Seeding admin...")
        seed_admin(session)
        print("Seeding catalog...")
        seed_products(session)
        seed_promotions(session)
    print("Done!")


if __name__ == "__main__":
    main()
