from .checkout import CheckoutLine, CheckoutRequest, PriceRequest, PricingResult, CheckoutResponse
from .order import OrderResponse, OrderListResponse
from .payment import PaymentTransactionResponse
from .promotion import PromotionResponse
from .voucher import VoucherResponse

__all__ = [
    "CheckoutLine", "CheckoutRequest", "PriceRequest", "PricingResult", "CheckoutResponse",
    "OrderResponse", "OrderListResponse",
    "PaymentTransactionResponse",
    "PromotionResponse",
    "VoucherResponse",
]
