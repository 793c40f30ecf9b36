from sqlmodel import SQLModel, Field, Relationship, UniqueConstraint
from typing import Optional, List, TYPE_CHECKING
from datetime import datetime
from decimal import Decimal
from app.core.clock import utcnow

if TYPE_CHECKING:
    from .category import Category, Brand
    from .order import OrderItem


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    slug: str = Field(unique=True, index=True)
    sku: Optional[str] = Field(default=None, unique=True)
    category_id: Optional[int] = Field(default=None, foreign_key="categories.id", index=True)
    brand_id: Optional[int] = Field(default=None, foreign_key="brands.id", index=True)

    price: Decimal = Field(max_digits=12, decimal_places=2)

    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Relationships
    category: Optional["Category"] = Relationship(back_populates="products")
    brand: Optional["Brand"] = Relationship(back_populates="products")
    inventories: List["Inventory"] = Relationship(back_populates="product")
    order_items: List["OrderItem"] = Relationship(back_populates="product")


class Inventory(SQLModel, table=True):
    """Остаток товара по размеру"""
    __tablename__ = "inventories"
    __table_args__ = (UniqueConstraint("product_id", "size"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    size: Optional[str] = None  # "42", "M"; None - товар без размеров
    quantity: int = Field(default=0, ge=0)

    updated_at: datetime = Field(default_factory=utcnow)

    # Relationships
    product: Optional["Product"] = Relationship(back_populates="inventories")
