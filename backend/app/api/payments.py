import logging
from urllib.parse import urlencode
from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlmodel import Session
from app.api.deps import get_db, get_identity
from app.api.checkout import client_ip
from app.core.config import settings
from app.core.errors import NotFound, TransientIOError
from app.core.identity import CustomerIdentity
from app.schemas.payment import PaymentTransactionResponse, ExpireResponse, RetryPaymentResponse
from app.services.checkout import retry_payment
from app.services.orders import get_customer_order
from app.services.payments import (
    ReconcileOutcome,
    ReconcileResult,
    handle_gateway_message,
    get_transaction,
    expire_transaction,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

# Ответы IPN в формате VNPay
VNPAY_IPN_RESPONSES = {
    ReconcileOutcome.APPLIED: ("00", "Confirm Success"),
    ReconcileOutcome.PENDING: ("00", "Confirm Success"),
    ReconcileOutcome.DUPLICATE: ("02", "Order already confirmed"),
    ReconcileOutcome.UNKNOWN: ("01", "Order not found"),
    ReconcileOutcome.REJECTED: ("97", "Invalid signature"),
    ReconcileOutcome.AMOUNT_MISMATCH: ("04", "Invalid amount"),
}


def result_redirect(result: ReconcileResult) -> RedirectResponse:
    """Редирект браузера на страницу результата оплаты"""
    params = {"outcome": result.outcome.value}
    if result.transaction is not None:
        params["transactionId"] = result.transaction.id
        params["orderId"] = result.transaction.order_id
        params["status"] = result.transaction.status.value
    if result.message:
        params["message"] = result.message
    return RedirectResponse(
        url=f"{settings.FRONTEND_URL}/payment-result?{urlencode(params)}",
        status_code=302,
    )


# === MoMo ===

@router.post("/momo/ipn", status_code=204)
def momo_ipn(fields: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    """IPN от MoMo (JSON); MoMo ждёт 204"""
    handle_gateway_message(db, "momo", fields)
    return Response(status_code=204)


@router.get("/momo/return")
def momo_return(request: Request, db: Session = Depends(get_db)):
    """Возврат покупателя со страницы MoMo"""
    result = handle_gateway_message(db, "momo", dict(request.query_params))
    return result_redirect(result)


# === VNPay ===

@router.get("/vnpay/ipn")
def vnpay_ipn(request: Request, db: Session = Depends(get_db)):
    """IPN от VNPay; ответ - RspCode/Message"""
    try:
        result = handle_gateway_message(db, "vnpay", dict(request.query_params))
    except TransientIOError:
        logger.warning("VNPay IPN could not be applied, asking VNPay to retry")
        return {"RspCode": "99", "Message": "Unknown error"}
    code, message = VNPAY_IPN_RESPONSES[result.outcome]
    return {"RspCode": code, "Message": message}


@router.get("/vnpay/return")
def vnpay_return(request: Request, db: Session = Depends(get_db)):
    """Возврат покупателя со страницы VNPay"""
    result = handle_gateway_message(db, "vnpay", dict(request.query_params))
    return result_redirect(result)


# === Транзакции ===

def get_customer_transaction(db: Session, transaction_id: int, identity: CustomerIdentity):
    tx = get_transaction(db, transaction_id)
    try:
        get_customer_order(db, tx.order_id, identity)
    except NotFound:
        raise NotFound("Payment transaction not found")
    return tx


@router.get("/transactions/{transaction_id}", response_model=PaymentTransactionResponse)
def get_payment_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    identity: CustomerIdentity = Depends(get_identity),
):
    """Состояние платёжной транзакции"""
    return get_customer_transaction(db, transaction_id, identity)


@router.post("/transactions/{transaction_id}/expire", response_model=ExpireResponse)
def expire_payment_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    identity: CustomerIdentity = Depends(get_identity),
):
    """Прервать ожидание оплаты (покупатель ушёл со страницы шлюза)"""
    get_customer_transaction(db, transaction_id, identity)
    expired = expire_transaction(db, transaction_id)
    tx = get_transaction(db, transaction_id)
    return ExpireResponse(transaction_id=tx.id, expired=expired, status=tx.status)


@router.post("/orders/{order_id}/retry", response_model=RetryPaymentResponse)
def retry_order_payment(
    order_id: int,
    request: Request,
    db: Session = Depends(get_db),
    identity: CustomerIdentity = Depends(get_identity),
):
    """Новая попытка оплаты заказа"""
    result = retry_payment(db, order_id, identity, client_ip=client_ip(request))
    return RetryPaymentResponse(
        order_id=result.order.id,
        transaction_id=result.transaction.id,
        redirect_url=result.redirect_url,
    )
