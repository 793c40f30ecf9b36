from .user import User, UserRole
from .category import Category, Brand
from .product import Product, Inventory
from .promotion import Promotion, PromotionType, PromotionScope
from .voucher import Voucher, VoucherType, VoucherRedemption
from .order import Order, OrderItem, OrderStatus, PaymentMethod
from .payment import PaymentTransaction, PaymentTransactionStatus

__all__ = [
    "User", "UserRole",
    "Category", "Brand",
    "Product", "Inventory",
    "Promotion", "PromotionType", "PromotionScope",
    "Voucher", "VoucherType", "VoucherRedemption",
    "Order", "OrderItem", "OrderStatus", "PaymentMethod",
    "PaymentTransaction", "PaymentTransactionStatus",
]
