from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select, col
from typing import Optional, List
from app.api.deps import get_db
from app.core.clock import utcnow
from app.models.category import Brand
from app.models.product import Product
from app.schemas.promotion import ProductPriceResponse
from app.core.errors import NotFound
from app.services.inventory import get_stock
from app.services.pricing import get_active_promotions, build_product_price

router = APIRouter(prefix="/api/products", tags=["products"])


def get_product_or_404(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product or not product.is_active:
        raise NotFound("Product not found")
    return product


@router.get("", response_model=List[ProductPriceResponse])
def list_product_prices(
    q: Optional[str] = Query(None, description="Search query"),
    category_id: Optional[int] = None,
    brand_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(12, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """Витрина: товары с ценой после акций"""
    stmt = select(Product).join(Brand, isouter=True).where(Product.is_active == True)
    if category_id:
        stmt = stmt.where(Product.category_id == category_id)
    if brand_id:
        stmt = stmt.where(Product.brand_id == brand_id)
    if q:
        search = f"%{q}%"
        stmt = stmt.where(
            (col(Product.name).ilike(search)) |
            (col(Brand.name).ilike(search))
        )
    stmt = stmt.order_by(col(Product.created_at).desc())
    stmt = stmt.offset((page - 1) * page_size).limit(page_size)

    now = utcnow()
    promotions = get_active_promotions(db, now)
    return [build_product_price(p, promotions, now) for p in db.exec(stmt).all()]


@router.get("/{product_id}/price", response_model=ProductPriceResponse)
def get_product_price(product_id: int, db: Session = Depends(get_db)):
    """Цена товара с лучшей акцией (тот же выбор, что при оформлении)"""
    product = get_product_or_404(db, product_id)
    now = utcnow()
    return build_product_price(product, get_active_promotions(db, now), now)


@router.get("/{product_id}/stock")
def get_product_stock(product_id: int, size: Optional[str] = None, db: Session = Depends(get_db)):
    """Остаток товара (по размеру)"""
    product = get_product_or_404(db, product_id)
    return {"product_id": product.id, "size": size, "quantity": get_stock(db, product.id, size)}
