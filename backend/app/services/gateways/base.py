"""
Базовый интерфейс платёжного шлюза.

Каждый шлюз умеет две вещи: initiate - подготовить платёж (подписанный
запрос/ссылка для редиректа) и parse_inbound - проверить подпись входящего
сообщения (IPN или возврат браузера) и разобрать его. Подпись проверяется
до чтения любых других полей.
"""
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from app.core.errors import ExternalIntegrityError, ValidationError
from app.models.order import Order

logger = logging.getLogger(__name__)


class GatewayResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


@dataclass(frozen=True)
class GatewayInitiation:
    redirect_url: Optional[str]
    external_reference: str
    expires_at: datetime
    gateway_request_id: Optional[str] = None


@dataclass(frozen=True)
class ParsedMessage:
    external_reference: str
    reported_amount: Decimal
    result: GatewayResult
    result_code: str
    message: str
    signature: str
    gateway_transaction_id: Optional[str] = None
    raw_fields: Dict[str, str] = field(default_factory=dict)


def hmac_hex(secret: str, message: str, digestmod=hashlib.sha256) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), digestmod).hexdigest()


def normalize_fields(fields: Mapping[str, Any]) -> Dict[str, str]:
    """Все значения входящего сообщения - строки (JSON IPN приходит с числами)"""
    return {str(k): "" if v is None else str(v) for k, v in fields.items()}


def require_signature(expected: str, received: str | None, gateway: str) -> str:
    if not received:
        raise ExternalIntegrityError(f"{gateway}: missing signature")
    if not hmac.compare_digest(expected.lower(), received.lower()):
        raise ExternalIntegrityError(f"{gateway}: invalid signature")
    return received


class PaymentGateway(ABC):
    """Платёжный шлюз"""

    name: str = ""
    # True - покупатель уходит на страницу шлюза, результат приходит асинхронно
    redirects: bool = True

    @abstractmethod
    def initiate(
        self,
        order: Order,
        amount: Decimal,
        reference: str,
        now: datetime,
        client_ip: str | None = None,
    ) -> GatewayInitiation:
        """Подготовить платёж; reference уже сохранён за транзакцией"""

    @abstractmethod
    def parse_inbound(self, fields: Mapping[str, Any]) -> ParsedMessage:
        """Проверить подпись и разобрать сообщение; при ошибке подписи - ExternalIntegrityError"""

    def describe(self, parsed: ParsedMessage) -> str:
        """Человекочитаемый результат для страницы оплаты"""
        return parsed.message or parsed.result_code


_registry: Dict[str, Callable[[], PaymentGateway]] = {}


def register_gateway(name: str, factory: Callable[[], PaymentGateway]) -> None:
    """Зарегистрировать шлюз (новый шлюз не требует изменений в сверке платежей)"""
    _registry[name] = factory


def get_gateway(name: str) -> PaymentGateway:
    factory = _registry.get(str(name))
    if factory is None:
        raise ValidationError(f"Payment gateway '{name}' is not supported")
    return factory()


def available_gateways() -> list[str]:
    return list(_registry.keys())
