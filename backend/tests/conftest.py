from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

import app.models  # noqa: F401
from app.api.deps import get_db, access_security
from app.core.clock import utcnow
from app.core.config import settings
from app.core.identity import CustomerIdentity
from app.main import app as fastapi_app
from app.models import (
    Inventory,
    Product,
    Promotion,
    PromotionScope,
    PromotionType,
    User,
    UserRole,
    Voucher,
    VoucherType,
)
from app.models.order import PaymentMethod
from app.schemas.checkout import CheckoutLine, CheckoutRequest
from app.services.gateways import MoMoGateway, VnPayGateway, register_gateway


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def now():
    return utcnow()


@pytest.fixture
def user(session):
    user = User(email="buyer@example.com", first_name="Lan")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def admin(session):
    admin = User(email="admin@example.com", role=UserRole.ADMIN)
    session.add(admin)
    session.commit()
    session.refresh(admin)
    return admin


@pytest.fixture
def identity(user):
    return CustomerIdentity.user(user.id)


@pytest.fixture
def guest():
    return CustomerIdentity.guest("guest-123")


@pytest.fixture
def make_product(session):
    counter = {"n": 0}

    def factory(price="1000000", stock=10, size=None, name=None, is_active=True, category=None, brand=None):
        counter["n"] += 1
        n = counter["n"]
        product = Product(
            name=name or f"Sneaker {n}",
            slug=f"sneaker-{n}",
            sku=f"SKU-{n:03d}",
            price=Decimal(price),
            is_active=is_active,
            category_id=category.id if category else None,
            brand_id=brand.id if brand else None,
        )
        session.add(product)
        session.flush()
        session.add(Inventory(product_id=product.id, size=size, quantity=stock))
        session.commit()
        session.refresh(product)
        return product

    return factory


@pytest.fixture
def make_promotion(session, now):
    def factory(value, type=PromotionType.PERCENT, **kwargs):
        kwargs.setdefault("name", f"Promo {value}")
        kwargs.setdefault("scope", PromotionScope.ALL)
        kwargs.setdefault("starts_at", now - timedelta(days=1))
        kwargs.setdefault("ends_at", now + timedelta(days=30))
        promo = Promotion(type=type, value=Decimal(str(value)), **kwargs)
        session.add(promo)
        session.commit()
        session.refresh(promo)
        return promo

    return factory


@pytest.fixture
def make_voucher(session, now):
    def factory(code="SUMMER10", value="10", type=VoucherType.PERCENT, **kwargs):
        kwargs.setdefault("name", code)
        kwargs.setdefault("starts_at", now - timedelta(days=1))
        kwargs.setdefault("ends_at", now + timedelta(days=30))
        voucher = Voucher(code=code, type=type, value=Decimal(value), **kwargs)
        session.add(voucher)
        session.commit()
        session.refresh(voucher)
        return voucher

    return factory


@pytest.fixture
def summer10(make_voucher):
    """10%, не больше 30 000, заказ от 200 000"""
    return make_voucher(
        "SUMMER10",
        "10",
        max_discount_amount=Decimal("30000"),
        min_order_amount=Decimal("200000"),
        usage_limit=100,
    )


@pytest.fixture
def checkout_request():
    def factory(product, quantity=1, payment_method=PaymentMethod.COD, voucher_code=None, size=None):
        return CheckoutRequest(
            items=[CheckoutLine(product_id=product.id, size=size, quantity=quantity)],
            voucher_code=voucher_code,
            payment_method=payment_method,
            customer_name="Nguyen Van A",
            customer_phone="0901234567",
            delivery_address="1 Le Loi, District 1",
        )

    return factory


# === Шлюзы ===

@pytest.fixture
def gateway_settings(monkeypatch):
    monkeypatch.setattr(settings, "MOMO_PARTNER_CODE", "MOMOTEST")
    monkeypatch.setattr(settings, "MOMO_ACCESS_KEY", "momo-access")
    monkeypatch.setattr(settings, "MOMO_SECRET_KEY", "momo-secret")
    monkeypatch.setattr(settings, "VNPAY_TMN_CODE", "TESTTMN1")
    monkeypatch.setattr(settings, "VNPAY_HASH_SECRET", "vnpay-secret")
    return settings


def http_response(data, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = data
    return response


@pytest.fixture
def momo_http(gateway_settings):
    """MoMo с подменённым HTTP-клиентом"""
    http = MagicMock()
    http.post.return_value = http_response({
        "resultCode": 0,
        "message": "Successful.",
        "payUrl": "https://test-payment.momo.vn/v2/gateway/pay?t=abc",
    })
    register_gateway("momo", lambda: MoMoGateway(http=http, retry_wait=0))
    yield http
    register_gateway("momo", MoMoGateway)


@pytest.fixture
def momo_message(gateway_settings):
    """Подписанное сообщение MoMo (IPN / возврат) для транзакции"""
    def factory(tx, result_code=0, amount=None, message="Successful.", trans_id="4088878653"):
        fields = {
            "partnerCode": settings.MOMO_PARTNER_CODE,
            "orderId": tx.external_reference,
            "requestId": "req-1",
            "amount": int(tx.requested_amount if amount is None else amount),
            "orderInfo": "Payment",
            "orderType": "momo_wallet",
            "transId": trans_id,
            "resultCode": result_code,
            "message": message,
            "payType": "qr",
            "responseTime": 1718000000000,
            "extraData": "",
        }
        gateway = MoMoGateway()
        fields["signature"] = gateway.inbound_signature({k: str(v) for k, v in fields.items()})
        return fields

    return factory


@pytest.fixture
def vnpay_message(gateway_settings):
    """Подписанный ответ VNPay для транзакции"""
    def factory(tx, response_code="00", amount=None, transaction_status=None):
        amount = tx.requested_amount if amount is None else Decimal(amount)
        fields = {
            "vnp_TmnCode": settings.VNPAY_TMN_CODE,
            "vnp_Amount": str(int(amount * 100)),
            "vnp_BankCode": "NCB",
            "vnp_OrderInfo": "Payment for order",
            "vnp_PayDate": "20250615120000",
            "vnp_ResponseCode": response_code,
            "vnp_TransactionNo": "14012345",
            "vnp_TransactionStatus": transaction_status or response_code,
            "vnp_TxnRef": tx.external_reference,
        }
        fields["vnp_SecureHash"] = VnPayGateway().sign(fields)
        fields["vnp_SecureHashType"] = "HmacSHA512"
        return fields

    return factory


# === HTTP ===

@pytest.fixture
def client(session):
    def override_get_db():
        yield session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    with TestClient(fastapi_app, follow_redirects=False) as client:
        yield client
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def factory(user):
        token = access_security.create_access_token(subject={"id": user.id})
        return {"Authorization": f"Bearer {token}"}

    return factory
