import threading
from datetime import timedelta
from decimal import Decimal

from sqlmodel import SQLModel, Session, select

import app.models  # noqa: F401
from app.core.clock import utcnow
from app.core.errors import TransientIOError
from app.core.identity import CustomerIdentity
from app.db.session import make_engine
from app.models import (
    Inventory,
    Order,
    OrderStatus,
    PaymentTransaction,
    PaymentTransactionStatus,
    Product,
    Voucher,
    VoucherRedemption,
    VoucherType,
)
from app.models.order import PaymentMethod
from app.schemas.checkout import CheckoutLine, CheckoutRequest
from app.services.checkout import checkout
from app.services.inventory import get_stock
from app.services.payments import ReconcileOutcome, handle_gateway_message

WORKERS = 8


def test_parallel_deliveries_of_one_success_apply_once(tmp_path, momo_http, momo_message):
    engine = make_engine(f"sqlite:///{tmp_path / 'payments.db'}")
    SQLModel.metadata.create_all(engine)
    now = utcnow()

    with Session(engine) as session:
        product = Product(name="Racer", slug="racer", sku="RC-001", price=Decimal("500000"))
        session.add(product)
        session.flush()
        session.add(Inventory(product_id=product.id, quantity=5))
        session.add(Voucher(
            code="RACE20",
            name="Race 20k",
            type=VoucherType.FIXED,
            value=Decimal("20000"),
            usage_limit=10,
            starts_at=now - timedelta(days=1),
            ends_at=now + timedelta(days=1),
        ))
        session.commit()
        product_id = product.id

        result = checkout(
            session,
            CheckoutRequest(
                items=[CheckoutLine(product_id=product_id, quantity=1)],
                voucher_code="RACE20",
                payment_method=PaymentMethod.MOMO,
                customer_name="Racer",
                customer_phone="0900000000",
            ),
            CustomerIdentity.guest("guest-1"),
            now,
        )
        assert result.order.status == OrderStatus.AWAITING_PAYMENT
        tx_id = result.transaction.id
        order_id = result.order.id
        message = momo_message(result.transaction)

    barrier = threading.Barrier(WORKERS)
    outcomes = []
    lock = threading.Lock()

    def worker():
        with Session(engine) as session:
            barrier.wait()
            try:
                outcome = handle_gateway_message(session, "momo", dict(message), now).outcome
            except TransientIOError:
                outcome = "transient"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(WORKERS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(ReconcileOutcome.APPLIED) == 1
    assert outcomes.count(ReconcileOutcome.DUPLICATE) == WORKERS - 1

    with Session(engine) as session:
        assert session.get(PaymentTransaction, tx_id).status == PaymentTransactionStatus.SUCCEEDED
        assert session.get(Order, order_id).status == OrderStatus.PAID
        # оплата не трогает резерв ваучера и остатков
        voucher = session.exec(select(Voucher).where(Voucher.code == "RACE20")).one()
        assert voucher.used_count == 1
        assert len(session.exec(select(VoucherRedemption)).all()) == 1
        assert get_stock(session, product_id) == 4

    engine.dispose()
