from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from app.core.errors import ValidationError
from app.models.order import Order
from app.services.gateways.base import PaymentGateway, GatewayInitiation, ParsedMessage


class CashOnDeliveryGateway(PaymentGateway):
    """Оплата при получении: подтверждается сразу, входящих сообщений нет"""

    name = "cod"
    redirects = False

    def initiate(
        self,
        order: Order,
        amount: Decimal,
        reference: str,
        now: datetime,
        client_ip: str | None = None,
    ) -> GatewayInitiation:
        return GatewayInitiation(redirect_url=None, external_reference=reference, expires_at=now)

    def parse_inbound(self, fields: Mapping[str, Any]) -> ParsedMessage:
        raise ValidationError("Cash on delivery has no gateway messages")
