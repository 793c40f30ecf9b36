"""
Ошибки расчёта и оплаты заказа.

ValidationError / BusinessRuleViolation / AmountMismatch - окончательные,
причина отдаётся клиенту. ExternalIntegrityError гасится на месте (лог, без
изменения состояния). TransientIOError и Conflict можно повторить.
"""
from enum import Enum


class SettlementError(Exception):
    """Базовая ошибка движка оформления заказа"""
    code = "settlement_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class ValidationError(SettlementError):
    """Некорректные входные данные"""
    code = "validation_error"
    status_code = 422


class NotFound(SettlementError):
    """Объект не найден"""
    code = "not_found"
    status_code = 404


class BusinessRuleViolation(SettlementError):
    """Нарушено бизнес-правило"""
    code = "business_rule_violation"
    status_code = 409


class InsufficientStock(BusinessRuleViolation):
    """Недостаточно товара на складе"""
    code = "insufficient_stock"

    def __init__(self, product_id: int, size: str | None = None, message: str | None = None):
        self.product_id = product_id
        self.size = size
        if message is None:
            label = f"size {size}" if size else f"product {product_id}"
            message = f"{label} out of stock"
        super().__init__(message)


class VoucherErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    NOT_YET_STARTED = "not_yet_started"
    INACTIVE = "inactive"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    BELOW_MINIMUM_ORDER = "below_minimum_order"
    ALREADY_USED_BY_IDENTITY = "already_used_by_identity"
    ALREADY_APPLIED = "already_applied"
    MALFORMED = "malformed"
    SYSTEM_ERROR = "system_error"


VOUCHER_MESSAGES = {
    VoucherErrorKind.NOT_FOUND: "Voucher does not exist",
    VoucherErrorKind.EXPIRED: "Voucher has expired",
    VoucherErrorKind.NOT_YET_STARTED: "Voucher is not active yet",
    VoucherErrorKind.INACTIVE: "Voucher has been disabled",
    VoucherErrorKind.USAGE_LIMIT_REACHED: "Voucher usage limit reached",
    VoucherErrorKind.BELOW_MINIMUM_ORDER: "Order total is below the voucher minimum",
    VoucherErrorKind.ALREADY_USED_BY_IDENTITY: "Voucher already used",
    VoucherErrorKind.ALREADY_APPLIED: "Voucher already applied to this order",
    VoucherErrorKind.MALFORMED: "Voucher code is malformed",
    VoucherErrorKind.SYSTEM_ERROR: "System error, please try again",
}


class VoucherError(BusinessRuleViolation):
    """Ваучер не может быть применён"""
    code = "voucher_error"

    def __init__(self, kind: VoucherErrorKind, message: str | None = None):
        self.kind = kind
        super().__init__(message or VOUCHER_MESSAGES[kind])

    @property
    def retryable(self) -> bool:
        return self.kind == VoucherErrorKind.SYSTEM_ERROR


class AmountMismatch(SettlementError):
    """Сумма от шлюза не совпадает с запрошенной"""
    code = "amount_mismatch"


class ExternalIntegrityError(SettlementError):
    """Подпись входящего сообщения шлюза не прошла проверку"""
    code = "external_integrity_error"
    status_code = 400


class GatewayError(SettlementError):
    """Шлюз отклонил запрос на создание платежа"""
    code = "gateway_error"
    status_code = 502


class TransientIOError(SettlementError):
    """Шлюз или хранилище временно недоступны"""
    code = "transient_io_error"
    status_code = 503
    retryable = True


class Conflict(SettlementError):
    """Параллельное изменение, повторите запрос"""
    code = "conflict"
    status_code = 409
    retryable = True
