"""
Каталог и склад.

Резерв и возврат остатков - условные UPDATE, без чтения перед записью.
Функции не делают commit: транзакцией управляет вызывающий код.
"""
import logging
from typing import Iterable, Protocol
from sqlalchemy import update
from sqlmodel import Session, select, col
from app.core.clock import utcnow
from app.core.errors import InsufficientStock, ValidationError
from app.models.product import Product, Inventory

logger = logging.getLogger(__name__)


class StockLine(Protocol):
    product_id: int
    size: str | None
    quantity: int


def get_product(db: Session, product_id: int) -> Product:
    """Активный продукт или ValidationError"""
    product = db.get(Product, product_id)
    if not product or not product.is_active:
        raise ValidationError(f"Product {product_id} not found")
    return product


def _inventory_filter(product_id: int, size: str | None):
    if size is None:
        return (Inventory.product_id == product_id, col(Inventory.size).is_(None))
    return (Inventory.product_id == product_id, Inventory.size == size)


def reserve_inventory(db: Session, lines: Iterable[StockLine]) -> None:
    """Списать остатки по всем строкам; при нехватке - InsufficientStock (откат делает вызывающий)"""
    for line in lines:
        stmt = (
            update(Inventory)
            .where(*_inventory_filter(line.product_id, line.size))
            .where(Inventory.quantity >= line.quantity)
            .values(quantity=Inventory.quantity - line.quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = db.exec(stmt)
        if result.rowcount != 1:
            logger.info(f"Insufficient stock for product {line.product_id} size {line.size}")
            raise InsufficientStock(line.product_id, line.size)


def release_inventory(db: Session, lines: Iterable[StockLine]) -> None:
    """Вернуть остатки (компенсация)"""
    for line in lines:
        stmt = (
            update(Inventory)
            .where(*_inventory_filter(line.product_id, line.size))
            .values(quantity=Inventory.quantity + line.quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.exec(stmt)


def get_stock(db: Session, product_id: int, size: str | None = None) -> int:
    stmt = select(Inventory.quantity).where(*_inventory_filter(product_id, size))
    quantity = db.exec(stmt).first()
    return quantity or 0
