"""
MoMo: создание платежа через API (POST JSON) и проверка IPN / возврата.

Подпись - HMAC-SHA256 (hex) над строкой key=value&... с фиксированным
порядком полей. Сумма передаётся целым числом донгов.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

import requests
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.core.config import settings
from app.core.errors import ExternalIntegrityError, GatewayError, TransientIOError
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

CREATE_SIGNATURE_FIELDS = (
    "accessKey", "amount", "extraData", "ipnUrl", "orderId", "orderInfo",
    "partnerCode", "redirectUrl", "requestId", "requestType",
)

INBOUND_SIGNATURE_FIELDS = (
    "accessKey", "amount", "extraData", "message", "orderId", "orderInfo", "orderType",
    "partnerCode", "payType", "requestId", "responseTime", "resultCode", "transId",
)

SUCCESS_CODES = {"0", "9000"}
PENDING_CODES = {"1000", "7000", "7002"}

TRANSIENT_ERRORS = (requests.ConnectionError, requests.Timeout)


class MoMoGateway(PaymentGateway):
    """Кошелёк MoMo"""

    name = "momo"
    redirects = True

    def __init__(
        self,
        partner_code: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        api_url: str | None = None,
        redirect_url: str | None = None,
        ipn_url: str | None = None,
        request_type: str | None = None,
        http: requests.Session | None = None,
        retries: int | None = None,
        retry_wait: float = 0.5,
    ):
        self.partner_code = partner_code or settings.MOMO_PARTNER_CODE
        self.access_key = access_key if access_key is not None else settings.MOMO_ACCESS_KEY
        self.secret_key = secret_key if secret_key is not None else settings.MOMO_SECRET_KEY
        self.api_url = api_url or settings.MOMO_API_URL
        self.redirect_url = redirect_url or settings.MOMO_REDIRECT_URL
        self.ipn_url = ipn_url or settings.MOMO_IPN_URL
        self.request_type = request_type or settings.MOMO_REQUEST_TYPE
        self.http = http or requests.Session()
        self.retries = retries or settings.PAYMENT_HTTP_RETRIES
        self.retry_wait = retry_wait

    def sign(self, fields: Mapping[str, str], order: tuple) -> str:
        raw = "&".join(f"{key}={fields.get(key, '')}" for key in order)
        return hmac_hex(self.secret_key, raw)

    def build_request(self, order: Order, amount: Decimal, reference: str) -> dict:
        """Тело запроса на создание платежа (с подписью)"""
        fields = {
            "accessKey": self.access_key,
            "amount": str(to_minor_units(amount)),
            "extraData": "",
            "ipnUrl": self.ipn_url,
            "orderId": reference,
            "orderInfo": f"Payment for order {order.order_number}",
            "partnerCode": self.partner_code,
            "redirectUrl": self.redirect_url,
            "requestId": uuid.uuid4().hex,
            "requestType": self.request_type,
        }
        payload = {key: value for key, value in fields.items() if key != "accessKey"}
        payload["amount"] = int(fields["amount"])
        payload["lang"] = "vi"
        payload["signature"] = self.sign(fields, CREATE_SIGNATURE_FIELDS)
        return payload

    def _post(self, payload: dict) -> dict:
        retrying = Retrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=self.retry_wait, max=4),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    response = self.http.post(
                        self.api_url,
                        json=payload,
                        timeout=settings.PAYMENT_HTTP_TIMEOUT_SECONDS,
                    )
        except TRANSIENT_ERRORS as e:
            logger.warning(f"MoMo is unreachable: {e}")
            raise TransientIOError("MoMo is temporarily unavailable")

        if response.status_code >= 500:
            raise TransientIOError(f"MoMo returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError:
            raise GatewayError("MoMo returned an unreadable response")

    def initiate(
        self,
        order: Order,
        amount: Decimal,
        reference: str,
        now: datetime,
        client_ip: str | None = None,
    ) -> GatewayInitiation:
        payload = self.build_request(order, amount, reference)
        logger.info(f"Creating MoMo payment {reference} for order {order.order_number}")

        data = self._post(payload)
        if str(data.get("resultCode")) != "0" or not data.get("payUrl"):
            message = data.get("message") or "Unknown error from MoMo"
            logger.warning(f"MoMo rejected payment {reference}: {data.get('resultCode')} {message}")
            raise GatewayError(message)

        return GatewayInitiation(
            redirect_url=data["payUrl"],
            external_reference=reference,
            expires_at=now + settings.payment_timeout,
            gateway_request_id=payload["requestId"],
        )

    def inbound_signature(self, fields: Mapping[str, str]) -> str:
        signed = dict(fields)
        signed["accessKey"] = self.access_key
        signed["partnerCode"] = self.partner_code
        return self.sign(signed, INBOUND_SIGNATURE_FIELDS)

    def parse_inbound(self, fields: Mapping[str, Any]) -> ParsedMessage:
        fields = normalize_fields(fields)
        signature = require_signature(self.inbound_signature(fields), fields.get("signature"), self.name)
        if fields.get("partnerCode") != self.partner_code:
            raise ExternalIntegrityError(f"{self.name}: message for another partner")

        result_code = fields.get("resultCode", "")
        if result_code in SUCCESS_CODES:
            result = GatewayResult.SUCCESS
        elif result_code in PENDING_CODES:
            result = GatewayResult.PENDING
        else:
            result = GatewayResult.FAILURE

        return ParsedMessage(
            external_reference=fields.get("orderId", ""),
            reported_amount=from_minor_units(fields.get("amount") or "0"),
            result=result,
            result_code=result_code,
            message=fields.get("message", ""),
            signature=signature,
            gateway_transaction_id=fields.get("transId") or None,
            raw_fields=fields,
        )
