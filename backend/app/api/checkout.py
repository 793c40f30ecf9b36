from fastapi import APIRouter, Depends, Request
from sqlmodel import Session
from app.api.deps import get_db, get_identity, get_identity_optional
from app.core.identity import CustomerIdentity
from app.schemas.checkout import PriceRequest, PricingResult, CheckoutRequest, CheckoutResponse
from app.services.checkout import checkout
from app.services.pricing import price_order

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/price", response_model=PricingResult)
def price_cart(
    data: PriceRequest,
    db: Session = Depends(get_db),
    identity: CustomerIdentity | None = Depends(get_identity_optional),
):
    """Предварительный расчёт корзины (без резервов)"""
    return price_order(db, data.items, data.voucher_code, identity)


@router.post("", response_model=CheckoutResponse, status_code=201)
def create_checkout(
    data: CheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
    identity: CustomerIdentity = Depends(get_identity),
):
    """Оформить заказ: COD подтверждается сразу, для MoMo/VNPay возвращается redirect_url"""
    result = checkout(db, data, identity, client_ip=client_ip(request))
    return CheckoutResponse(
        order_id=result.order.id,
        order_number=result.order.order_number,
        status=result.order.status,
        total_amount=result.order.total_amount,
        redirect_url=result.redirect_url,
        transaction_id=result.transaction.id,
        transaction_status=result.transaction.status,
    )
