"""
VNPay: подписанная ссылка на страницу оплаты и проверка IPN / возврата.

Подпись - HMAC-SHA512 над отсортированными по ключу vnp_* параметрами в
URL-кодировке (без vnp_SecureHash и vnp_SecureHashType). Сумма * 100.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping
from urllib.parse import quote_plus
import hashlib

from app.core.config import settings
from app.core.money import to_minor_units, from_minor_units
from app.models.order import Order
from app.services.gateways.base import (
    PaymentGateway,
    GatewayInitiation,
    GatewayResult,
    ParsedMessage,
    hmac_hex,
    normalize_fields,
    require_signature,
)

logger = logging.getLogger(__name__)

AMOUNT_FACTOR = 100
# VNPay ожидает время по Ханою
VNPAY_TZ_OFFSET = timedelta(hours=7)
UNSIGNED_FIELDS = {"vnp_SecureHash", "vnp_SecureHashType"}

RESPONSE_MESSAGES = {
    "00": "Transaction successful",
    "07": "Money deducted, transaction suspected of fraud",
    "09": "Card or account is not registered for internet banking",
    "10": "Card or account verification failed more than 3 times",
    "11": "Payment window expired, please try again",
    "12": "Card or account is locked",
    "13": "Wrong one-time password",
    "24": "Customer cancelled the transaction",
    "51": "Insufficient account balance",
    "65": "Daily transaction limit exceeded",
    "75": "Bank is under maintenance",
    "79": "Wrong payment password entered too many times",
    "99": "Other error",
}


def response_message(code: str) -> str:
    return RESPONSE_MESSAGES.get(code, f"Transaction failed (code {code})")


def canonical_query(params: Mapping[str, str]) -> str:
    return "&".join(
        f"{key}={quote_plus(str(params[key]))}"
        for key in sorted(params)
        if params[key] not in (None, "")
    )


class VnPayGateway(PaymentGateway):
    """VNPay (банковские карты, QR)"""

    name = "vnpay"
    redirects = True

    def __init__(
        self,
        tmn_code: str | None = None,
        hash_secret: str | None = None,
        base_url: str | None = None,
        return_url: str | None = None,
    ):
        self.tmn_code = tmn_code if tmn_code is not None else settings.VNPAY_TMN_CODE
        self.hash_secret = hash_secret if hash_secret is not None else settings.VNPAY_HASH_SECRET
        self.base_url = base_url or settings.VNPAY_BASE_URL
        self.return_url = return_url or settings.VNPAY_RETURN_URL

    def sign(self, params: Mapping[str, str]) -> str:
        signed = {k: v for k, v in params.items() if k.startswith("vnp_") and k not in UNSIGNED_FIELDS}
        return hmac_hex(self.hash_secret, canonical_query(signed), hashlib.sha512)

    def initiate(
        self,
        order: Order,
        amount: Decimal,
        reference: str,
        now: datetime,
        client_ip: str | None = None,
    ) -> GatewayInitiation:
        expires_at = now + settings.payment_timeout
        params = {
            "vnp_Version": settings.VNPAY_VERSION,
            "vnp_Command": settings.VNPAY_COMMAND,
            "vnp_TmnCode": self.tmn_code,
            "vnp_Amount": str(to_minor_units(amount, AMOUNT_FACTOR)),
            "vnp_CreateDate": (now + VNPAY_TZ_OFFSET).strftime("%Y%m%d%H%M%S"),
            "vnp_ExpireDate": (expires_at + VNPAY_TZ_OFFSET).strftime("%Y%m%d%H%M%S"),
            "vnp_CurrCode": settings.CURRENCY,
            "vnp_IpAddr": client_ip or "127.0.0.1",
            "vnp_Locale": settings.VNPAY_LOCALE,
            "vnp_OrderInfo": f"Payment for order {order.order_number}",
            "vnp_OrderType": "other",
            "vnp_TxnRef": reference,
            "vnp_ReturnUrl": self.return_url,
        }
        url = f"{self.base_url}?{canonical_query(params)}&vnp_SecureHash={self.sign(params)}"
        logger.info(f"VNPay payment URL created for {reference}, order {order.order_number}")

        return GatewayInitiation(redirect_url=url, external_reference=reference, expires_at=expires_at)

    def parse_inbound(self, fields: Mapping[str, Any]) -> ParsedMessage:
        fields = normalize_fields(fields)
        signature = require_signature(self.sign(fields), fields.get("vnp_SecureHash"), self.name)

        response_code = fields.get("vnp_ResponseCode", "")
        transaction_status = fields.get("vnp_TransactionStatus", "")
        if response_code == "00" and transaction_status in ("", "00"):
            result = GatewayResult.SUCCESS
        else:
            result = GatewayResult.FAILURE

        return ParsedMessage(
            external_reference=fields.get("vnp_TxnRef", ""),
            reported_amount=from_minor_units(fields.get("vnp_Amount") or "0", AMOUNT_FACTOR),
            result=result,
            result_code=response_code,
            message=response_message(response_code),
            signature=signature,
            gateway_transaction_id=fields.get("vnp_TransactionNo") or None,
            raw_fields=fields,
        )
