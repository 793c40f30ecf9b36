from app.services.gateways.base import (
    PaymentGateway,
    GatewayInitiation,
    GatewayResult,
    ParsedMessage,
    register_gateway,
    get_gateway,
    available_gateways,
)
from app.services.gateways.cod import CashOnDeliveryGateway
from app.services.gateways.momo import MoMoGateway
from app.services.gateways.vnpay import VnPayGateway

register_gateway(CashOnDeliveryGateway.name, CashOnDeliveryGateway)
register_gateway(MoMoGateway.name, MoMoGateway)
register_gateway(VnPayGateway.name, VnPayGateway)

__all__ = [
    "PaymentGateway",
    "GatewayInitiation",
    "GatewayResult",
    "ParsedMessage",
    "register_gateway",
    "get_gateway",
    "available_gateways",
    "CashOnDeliveryGateway",
    "MoMoGateway",
    "VnPayGateway",
]
