"""
M-Pesa Callback Processor Tests.

Covers reconciliation of STK push results into payment records and the
ledger, duplicate deliveries, and the failure log path.
"""

from datetime import date

import pytest

from payments_backend.app.domain.ledger.invoice_ledger import InvoiceLedger
from payments_backend.app.domain.payments.callback_processor import (
    CallbackProcessor, ledger_date_from_transaction
)
from payments_backend.app.models.billing_enums import InvoiceType, PaymentStatus
from payments_backend.app.schemas.payment import StkCallbackEnvelope

CHECKOUT_ID = "ws_CO_191220191020363925"
SUCCESS_ITEMS = [
    {"Name": "Amount", "Value": 200.00},
    {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
    {"Name": "Balance"},
    {"Name": "TransactionDate", "Value": 20191219102115},
    {"Name": "PhoneNumber", "Value": 254708374149},
]


def stk_envelope(checkout_id=CHECKOUT_ID, result_code=0, items=None):
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
    }
    if items is not None:
        callback["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": callback}}


@pytest.fixture
async def pending_payment(ledger, tracker, db_session):
    invoice = await ledger.create_invoice("order-1", 200.0)
    record = await tracker.create_payment_record(
        invoice_id=invoice.id,
        order_id="order-1",
        checkout_request_id=CHECKOUT_ID,
        merchant_request_id="29115-34620561-1",
        phone="254708374149",
        amount=200.0,
    )
    await db_session.commit()
    return invoice, record


@pytest.fixture
def processor(db_session, ledger, tracker, failure_log):
    return CallbackProcessor(
        db_session, ledger=ledger, tracker=tracker, failures=failure_log,
        today=lambda: date(2026, 2, 8),
    )


async def process(processor, payload):
    return await processor.process(StkCallbackEnvelope.model_validate(payload))


@pytest.mark.asyncio
async def test_successful_callback_completes_payment_and_records_invoice_amount(
    processor, pending_payment, ledger, tracker
):
    invoice, _ = pending_payment

    ack = await process(processor, stk_envelope(items=SUCCESS_ITEMS))

    assert ack == {"ResultCode": "0", "ResultDesc": "Callback received"}
    record = await tracker.get_by_checkout_id(CHECKOUT_ID)
    assert record.status == PaymentStatus.COMPLETED
    assert record.mpesa_receipt_number == "NLJ7RT61SV"
    assert record.transaction_date == "20191219102115"

    updated = await ledger.get_invoice(invoice.id)
    assert updated.paid_amount == 200.0
    assert updated.paid_on == {"2019-12-19": 200.0}
    assert updated.type == InvoiceType.PAYABLE


@pytest.mark.asyncio
async def test_failed_callback_marks_record_failed_without_ledger_change(
    processor, pending_payment, ledger, tracker
):
    invoice, _ = pending_payment

    ack = await process(processor, stk_envelope(result_code=1032))

    assert ack["ResultCode"] == "0"
    record = await tracker.get_by_checkout_id(CHECKOUT_ID)
    assert record.status == PaymentStatus.FAILED
    assert record.mpesa_receipt_number is None
    assert (await ledger.get_invoice(invoice.id)).paid_amount == 0.0


@pytest.mark.asyncio
async def test_unknown_checkout_id_is_acknowledged_as_not_found(processor, pending_payment, ledger):
    invoice, _ = pending_payment

    ack = await process(processor, stk_envelope(checkout_id="ws_CO_unknown", items=SUCCESS_ITEMS))

    assert ack == {"ResultCode": "1", "ResultDesc": "Payment not found"}
    assert (await ledger.get_invoice(invoice.id)).paid_amount == 0.0


@pytest.mark.asyncio
async def test_duplicate_callback_does_not_pay_twice(processor, pending_payment, ledger):
    invoice, _ = pending_payment

    await process(processor, stk_envelope(items=SUCCESS_ITEMS))
    ack = await process(processor, stk_envelope(items=SUCCESS_ITEMS))

    assert ack["ResultCode"] == "0"
    assert (await ledger.get_invoice(invoice.id)).paid_amount == 200.0


@pytest.mark.asyncio
async def test_missing_metadata_falls_back_to_today(processor, pending_payment, ledger, tracker):
    invoice, _ = pending_payment

    await process(processor, stk_envelope(items=[{"Name": "Amount", "Value": 200.0}]))

    record = await tracker.get_by_checkout_id(CHECKOUT_ID)
    assert record.status == PaymentStatus.COMPLETED
    assert record.mpesa_receipt_number is None
    assert (await ledger.get_invoice(invoice.id)).paid_on == {"2026-02-08": 200.0}


@pytest.mark.asyncio
async def test_ledger_failure_rolls_back_and_is_logged(
    processor, pending_payment, ledger, tracker, failure_log, mocker
):
    invoice, _ = pending_payment
    mocker.patch.object(ledger, "record_payment", side_effect=RuntimeError("database unavailable"))

    ack = await process(processor, stk_envelope(items=SUCCESS_ITEMS))

    assert ack["ResultCode"] == "0"
    # Payment record update was rolled back with the ledger write
    record = await tracker.get_by_checkout_id(CHECKOUT_ID)
    assert record.status == PaymentStatus.INITIATED

    failures = await failure_log.list_failures()
    assert len(failures) == 1
    assert failures[0].task_name == "mpesa_callback"
    assert failures[0].reference == CHECKOUT_ID
    assert "database unavailable" in failures[0].error_message
    assert failures[0].payload["Body"]["stkCallback"]["CheckoutRequestID"] == CHECKOUT_ID


@pytest.mark.asyncio
async def test_callback_is_acknowledged_when_failure_log_is_unavailable(
    processor, pending_payment, ledger, tracker, failure_log, mocker
):
    mocker.patch.object(ledger, "record_payment", side_effect=RuntimeError("database unavailable"))
    mocker.patch.object(failure_log, "record_failure", side_effect=RuntimeError("database unavailable"))

    ack = await process(processor, stk_envelope(items=SUCCESS_ITEMS))

    assert ack == {"ResultCode": "0", "ResultDesc": "Callback received"}
    record = await tracker.get_by_checkout_id(CHECKOUT_ID)
    assert record.status == PaymentStatus.INITIATED


@pytest.mark.parametrize("stamp, expected", [
    ("20191219102115", "2019-12-19"),
    ("garbage", "2026-02-08"),
    (None, "2026-02-08"),
])
def test_ledger_date_from_transaction(stamp, expected):
    assert ledger_date_from_transaction(stamp, date(2026, 2, 8)) == expected


# HTTP surface

@pytest.mark.asyncio
async def test_callback_endpoint_unknown_checkout_returns_200(client, pending_payment, ledger):
    invoice, _ = pending_payment

    response = await client.post("/v1/mpesa/callback", json=stk_envelope(checkout_id="ws_CO_nope", items=SUCCESS_ITEMS))

    assert response.status_code == 200
    assert response.json() == {"ResultCode": "1", "ResultDesc": "Payment not found"}
    assert (await ledger.get_invoice(invoice.id)).paid_amount == 0.0


@pytest.mark.asyncio
async def test_callback_endpoint_settles_payment(client, pending_payment, session_factory):
    invoice, _ = pending_payment

    response = await client.post("/v1/mpesa/callback", json=stk_envelope(items=SUCCESS_ITEMS))

    assert response.status_code == 200
    assert response.json()["ResultCode"] == "0"
    async with session_factory() as session:
        fresh = await InvoiceLedger(session).get_invoice(invoice.id)
        assert fresh.paid_amount == 200.0


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"not json", b'{"Body": {}}', b'{"Body": {"stkCallback": {"ResultCode": 0}}}'])
async def test_callback_endpoint_rejects_malformed_payload(client, body):
    response = await client.post(
        "/v1/mpesa/callback", content=body, headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 200
    assert response.json() == {"ResultCode": "1", "ResultDesc": "Invalid callback payload"}


@pytest.mark.asyncio
async def test_callback_endpoint_acknowledges_when_store_is_down(client, pending_payment, mocker):
    mocker.patch(
        "payments_backend.app.domain.ledger.invoice_ledger.InvoiceLedger.record_payment",
        side_effect=RuntimeError("db down"),
    )
    mocker.patch(
        "payments_backend.app.services.reconciliation.ReconciliationFailureLog.record_failure",
        side_effect=RuntimeError("db down"),
    )

    response = await client.post("/v1/mpesa/callback", json=stk_envelope(items=SUCCESS_ITEMS))

    assert response.status_code == 200
    assert response.json() == {"ResultCode": "0", "ResultDesc": "Callback received"}
