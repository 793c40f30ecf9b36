from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.models import Order, OrderStatus, PaymentTransaction, PaymentTransactionStatus, Voucher
from app.models.order import PaymentMethod
from app.services.checkout import checkout
from app.services.gateways import VnPayGateway
from app.services.inventory import get_stock
from app.services.payments import (
    ReconcileOutcome,
    cancel_transaction,
    expire_transaction,
    handle_gateway_message,
    sweep_expired_transactions,
)


@pytest.fixture
def momo_order(session, make_product, checkout_request, summer10, momo_http, identity, now):
    """Заказ на 470 000 (SUMMER10) в ожидании оплаты MoMo; остаток 4 из 5"""
    product = make_product("500000", stock=5)
    result = checkout(
        session,
        checkout_request(product, payment_method=PaymentMethod.MOMO, voucher_code="SUMMER10"),
        identity,
        now,
    )
    result.product = product
    return result


@pytest.fixture
def vnpay_order(session, make_product, checkout_request, gateway_settings, identity, now):
    product = make_product("470000", stock=5)
    result = checkout(session, checkout_request(product, payment_method=PaymentMethod.VNPAY), identity, now)
    result.product = product
    return result


def reload(session, model, id):
    return session.get(model, id, populate_existing=True)


def test_success_marks_order_paid(session, momo_order, momo_message, summer10):
    tx = momo_order.transaction

    result = handle_gateway_message(session, "momo", momo_message(tx))

    assert result.outcome == ReconcileOutcome.APPLIED
    assert result.accepted
    assert result.transaction.status == PaymentTransactionStatus.SUCCEEDED
    assert result.transaction.gateway_transaction_id == "4088878653"
    assert reload(session, Order, tx.order_id).status == OrderStatus.PAID
    assert reload(session, Voucher, summer10.id).used_count == 1
    assert get_stock(session, momo_order.product.id) == 4


def test_callback_then_return_applies_once(session, momo_order, momo_message):
    tx = momo_order.transaction
    message = momo_message(tx)

    ipn = handle_gateway_message(session, "momo", message)
    browser_return = handle_gateway_message(session, "momo", dict(message))

    assert ipn.outcome == ReconcileOutcome.APPLIED
    assert browser_return.outcome == ReconcileOutcome.DUPLICATE
    assert browser_return.transaction.status == PaymentTransactionStatus.SUCCEEDED


def test_failure_after_success_is_ignored(session, momo_order, momo_message):
    tx = momo_order.transaction
    handle_gateway_message(session, "momo", momo_message(tx))

    late = handle_gateway_message(session, "momo", momo_message(tx, result_code=1006, message="Denied"))

    assert late.outcome == ReconcileOutcome.DUPLICATE
    assert reload(session, Order, tx.order_id).status == OrderStatus.PAID


def test_failure_rejects_order_and_compensates(session, momo_order, momo_message, summer10):
    tx = momo_order.transaction

    result = handle_gateway_message(
        session, "momo", momo_message(tx, result_code=1006, message="Transaction denied by user.")
    )

    assert result.outcome == ReconcileOutcome.APPLIED
    assert result.transaction.status == PaymentTransactionStatus.FAILED
    assert result.transaction.failure_reason == "Transaction denied by user."
    assert reload(session, Order, tx.order_id).status == OrderStatus.REJECTED
    assert reload(session, Voucher, summer10.id).used_count == 0
    assert get_stock(session, momo_order.product.id) == 5

    # повтор не возвращает остатки второй раз
    again = handle_gateway_message(session, "momo", momo_message(tx, result_code=1006, message="Again"))
    assert again.outcome == ReconcileOutcome.DUPLICATE
    assert get_stock(session, momo_order.product.id) == 5


def test_pending_result_keeps_waiting(session, momo_order, momo_message):
    tx = momo_order.transaction
    message = momo_message(tx, result_code=7000, message="Processing")

    result = handle_gateway_message(session, "momo", message)

    assert result.outcome == ReconcileOutcome.PENDING
    assert result.transaction.status == PaymentTransactionStatus.AWAITING_CALLBACK
    assert result.transaction.last_message_signature == message["signature"]
    assert handle_gateway_message(session, "momo", message).outcome == ReconcileOutcome.DUPLICATE

    final = handle_gateway_message(session, "momo", momo_message(tx))
    assert final.outcome == ReconcileOutcome.APPLIED


def test_amount_mismatch_fails_regardless_of_result(session, momo_order, momo_message):
    tx = momo_order.transaction

    result = handle_gateway_message(session, "momo", momo_message(tx, amount=Decimal("1000")))

    assert result.outcome == ReconcileOutcome.AMOUNT_MISMATCH
    assert result.transaction.status == PaymentTransactionStatus.FAILED
    assert "Amount mismatch" in result.transaction.failure_reason
    assert reload(session, Order, tx.order_id).status == OrderStatus.REJECTED
    assert get_stock(session, momo_order.product.id) == 5


def test_bad_signature_changes_nothing(session, momo_order, momo_message):
    tx = momo_order.transaction
    message = momo_message(tx)
    message["signature"] = "0" * 64

    result = handle_gateway_message(session, "momo", message)

    assert result.outcome == ReconcileOutcome.REJECTED
    assert not result.accepted
    assert reload(session, PaymentTransaction, tx.id).status == PaymentTransactionStatus.AWAITING_CALLBACK
    assert reload(session, Order, tx.order_id).status == OrderStatus.AWAITING_PAYMENT


def test_unknown_reference(session, momo_order, momo_message):
    stranger = SimpleNamespace(external_reference="NOSUCHREF", requested_amount=momo_order.transaction.requested_amount)
    message = momo_message(stranger)

    result = handle_gateway_message(session, "momo", message)

    assert result.outcome == ReconcileOutcome.UNKNOWN


def test_vnpay_success_and_failure(session, vnpay_order, vnpay_message):
    tx = vnpay_order.transaction

    result = handle_gateway_message(session, "vnpay", vnpay_message(tx, response_code="24"))

    assert result.outcome == ReconcileOutcome.APPLIED
    assert result.transaction.status == PaymentTransactionStatus.FAILED
    assert result.message == "Customer cancelled the transaction"
    assert get_stock(session, vnpay_order.product.id) == 5


def test_expire_compensates_once(session, momo_order, summer10):
    tx = momo_order.transaction

    assert expire_transaction(session, tx.id) is True
    assert expire_transaction(session, tx.id) is False

    assert reload(session, PaymentTransaction, tx.id).status == PaymentTransactionStatus.EXPIRED
    assert reload(session, Order, tx.order_id).status == OrderStatus.CANCELLED
    assert reload(session, Voucher, summer10.id).used_count == 0
    assert get_stock(session, momo_order.product.id) == 5


def test_success_after_expiry_is_ignored(session, momo_order, momo_message):
    tx = momo_order.transaction
    expire_transaction(session, tx.id)

    result = handle_gateway_message(session, "momo", momo_message(tx))

    assert result.outcome == ReconcileOutcome.DUPLICATE
    assert reload(session, Order, tx.order_id).status == OrderStatus.CANCELLED


def test_sweep_expires_only_overdue(session, momo_order, make_product, checkout_request, identity, now):
    cod = checkout(session, checkout_request(make_product()), identity, now)

    assert sweep_expired_transactions(session, now + timedelta(minutes=14)) == 0
    # ровно в expires_at платёж ещё действует
    assert sweep_expired_transactions(session, now + timedelta(minutes=15)) == 0
    assert sweep_expired_transactions(session, now + timedelta(minutes=15, seconds=1)) == 1
    assert sweep_expired_transactions(session, now + timedelta(minutes=30)) == 0

    assert reload(session, Order, momo_order.order.id).status == OrderStatus.CANCELLED
    assert reload(session, Order, cod.order.id).status == OrderStatus.PAID


def test_cancel_transaction(session, momo_order):
    tx = momo_order.transaction

    assert cancel_transaction(session, tx.id, "Customer left") is True
    assert cancel_transaction(session, tx.id) is False

    tx = reload(session, PaymentTransaction, tx.id)
    assert tx.status == PaymentTransactionStatus.CANCELLED
    assert tx.failure_reason == "Customer left"
    assert reload(session, Order, tx.order_id).status == OrderStatus.CANCELLED


@pytest.mark.parametrize("field,value", [
    ("orderId", "250101000000DEADBEEF"),
    ("amount", 1000),
    ("resultCode", 0),
    ("transId", "999"),
])
def test_tampered_momo_message_changes_nothing(session, momo_order, momo_message, field, value):
    tx = momo_order.transaction
    message = momo_message(tx, result_code=1006, message="Denied")
    message[field] = value

    result = handle_gateway_message(session, "momo", message)

    assert result.outcome == ReconcileOutcome.REJECTED
    assert reload(session, PaymentTransaction, tx.id).status == PaymentTransactionStatus.AWAITING_CALLBACK
    assert reload(session, Order, tx.order_id).status == OrderStatus.AWAITING_PAYMENT
    assert get_stock(session, momo_order.product.id) == 4


@pytest.mark.parametrize("field,value", [
    ("vnp_TxnRef", "OTHERREF"),
    ("vnp_Amount", "100"),
    ("vnp_ResponseCode", "00"),
    ("vnp_TransactionStatus", "00"),
])
def test_tampered_vnpay_message_changes_nothing(session, vnpay_order, vnpay_message, field, value):
    tx = vnpay_order.transaction
    message = vnpay_message(tx, response_code="24")
    message[field] = value

    result = handle_gateway_message(session, "vnpay", message)

    assert result.outcome == ReconcileOutcome.REJECTED
    assert reload(session, PaymentTransaction, tx.id).status == PaymentTransactionStatus.AWAITING_CALLBACK
    assert get_stock(session, vnpay_order.product.id) == 4


def test_signed_non_numeric_amount_is_rejected(session, vnpay_order, vnpay_message):
    tx = vnpay_order.transaction
    message = vnpay_message(tx)
    message["vnp_Amount"] = "47OOOOOO"
    message["vnp_SecureHash"] = VnPayGateway().sign(message)

    result = handle_gateway_message(session, "vnpay", message)

    assert result.outcome == ReconcileOutcome.REJECTED
    assert reload(session, PaymentTransaction, tx.id).status == PaymentTransactionStatus.AWAITING_CALLBACK
