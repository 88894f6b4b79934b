"""
Invoice Ledger Tests.

Payment and reversal rules, monetary invariants, and optimistic locking.
"""

import math
import pytest

from payments_backend.app.core.exceptions import ValidationError, NotFoundError, ConflictError
from payments_backend.app.domain.ledger.invoice_ledger import InvoiceLedger, validate_ledger_date
from payments_backend.app.models.billing_enums import InvoiceType


def assert_balanced(invoice):
    assert invoice.paid_amount >= 0
    assert math.isclose(invoice.paid_amount, sum(invoice.paid_on.values()), abs_tol=1e-9)


@pytest.fixture
async def invoice(ledger, db_session):
    created = await ledger.create_invoice("order-1", 200.0, tax_amount=32.0)
    await db_session.commit()
    return created


@pytest.mark.asyncio
async def test_create_invoice_defaults(invoice):
    assert invoice.type == InvoiceType.PAYABLE
    assert invoice.paid_amount == 0.0
    assert invoice.paid_on == {}
    assert invoice.invoice_amount == 200.0
    assert invoice.tax_amount == 32.0
    assert invoice.version == 1


@pytest.mark.asyncio
async def test_create_invoice_rejects_bad_amounts(ledger):
    with pytest.raises(ValidationError):
        await ledger.create_invoice("order-x", 0)
    with pytest.raises(ValidationError):
        await ledger.create_invoice("order-x", 10.0, tax_amount=-1)


@pytest.mark.asyncio
async def test_second_invoice_for_order_conflicts(invoice, ledger):
    with pytest.raises(ConflictError):
        await ledger.create_invoice("order-1", 50.0)


@pytest.mark.asyncio
async def test_scenario_a_partial_reversal(invoice, ledger):
    await ledger.record_payment(invoice.id, 100.0, "2026-02-08")

    updated = await ledger.reverse_amount(invoice.id, 30.0, "2026-02-09")

    assert updated.paid_amount == 70.0
    assert updated.paid_on["2026-02-09"] == -30.0
    assert updated.paid_on["2026-02-08"] == 100.0
    assert updated.type == InvoiceType.PAYABLE
    assert_balanced(updated)


@pytest.mark.asyncio
async def test_scenario_b_full_reversal_after_partial(invoice, ledger):
    await ledger.record_payment(invoice.id, 100.0, "2026-02-08")
    await ledger.reverse_amount(invoice.id, 30.0, "2026-02-09")

    updated = await ledger.reverse_all(invoice.id, "2026-02-10")

    assert updated.paid_amount == 0.0
    assert updated.paid_on == {}
    assert updated.type == InvoiceType.RECEIVABLE


@pytest.mark.asyncio
async def test_scenario_c_payments_accumulate_per_date(invoice, ledger):
    await ledger.record_payment(invoice.id, 50.0, "2026-02-08")
    updated = await ledger.record_payment(invoice.id, 50.0, "2026-02-08")

    assert updated.paid_amount == 100.0
    assert updated.paid_on == {"2026-02-08": 100.0}


@pytest.mark.asyncio
async def test_reverse_amount_clamps_to_paid(invoice, ledger):
    await ledger.record_payment(invoice.id, 40.0, "2026-02-08")

    updated = await ledger.reverse_amount(invoice.id, 100.0, "2026-02-09")

    assert updated.paid_amount == 0.0
    assert updated.paid_on["2026-02-09"] == -40.0
    assert updated.type == InvoiceType.RECEIVABLE
    assert_balanced(updated)


@pytest.mark.asyncio
async def test_reverse_amount_on_unpaid_invoice_writes_no_entry(invoice, ledger):
    updated = await ledger.reverse_amount(invoice.id, 10.0, "2026-02-09")

    assert updated.paid_amount == 0.0
    assert updated.paid_on == {}
    assert updated.type == InvoiceType.RECEIVABLE


@pytest.mark.asyncio
async def test_entries_summing_to_zero_remain(invoice, ledger):
    await ledger.record_payment(invoice.id, 25.0, "2026-02-08")
    updated = await ledger.reverse_amount(invoice.id, 25.0, "2026-02-08")

    assert updated.paid_on == {"2026-02-08": 0.0}
    assert updated.paid_amount == 0.0


@pytest.mark.asyncio
async def test_invariants_hold_over_mixed_sequence(invoice, ledger):
    await ledger.record_payment(invoice.id, 12.5, "2026-01-01")
    await ledger.record_payment(invoice.id, 7.25, "2026-01-02")
    await ledger.reverse_amount(invoice.id, 3.1, "2026-01-02")
    await ledger.record_payment(invoice.id, 0.35, "2026-01-03")
    await ledger.reverse_amount(invoice.id, 100.0, "2026-01-04")
    updated = await ledger.record_payment(invoice.id, 9.99, "2026-01-05")

    assert_balanced(updated)
    assert math.isclose(updated.paid_amount, 9.99, abs_tol=1e-9)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5.0, float("nan"), float("inf")])
async def test_record_payment_rejects_invalid_amount(invoice, ledger, amount):
    with pytest.raises(ValidationError):
        await ledger.record_payment(invoice.id, amount, "2026-02-08")


@pytest.mark.asyncio
@pytest.mark.parametrize("date_str", ["2026/02/08", "08-02-2026", "2026-02-30", "2026-2-8", ""])
async def test_record_payment_rejects_invalid_date(invoice, ledger, date_str):
    with pytest.raises(ValidationError):
        await ledger.record_payment(invoice.id, 10.0, date_str)


@pytest.mark.asyncio
async def test_reverse_amount_rejects_non_positive(invoice, ledger):
    with pytest.raises(ValidationError):
        await ledger.reverse_amount(invoice.id, 0, "2026-02-08")


@pytest.mark.asyncio
async def test_missing_invoice_is_not_found(ledger):
    with pytest.raises(NotFoundError):
        await ledger.get_invoice("missing")
    with pytest.raises(NotFoundError):
        await ledger.record_payment("missing", 10.0, "2026-02-08")
    with pytest.raises(NotFoundError):
        await ledger.reverse_all("missing", "2026-02-08")
    with pytest.raises(NotFoundError):
        await ledger.reverse_amount("missing", 10.0, "2026-02-08")
    with pytest.raises(NotFoundError):
        await ledger.get_invoice_by_order("no-order")


@pytest.mark.asyncio
async def test_reverse_all_does_not_validate_date(invoice, ledger):
    await ledger.record_payment(invoice.id, 10.0, "2026-02-08")
    updated = await ledger.reverse_all(invoice.id, "not-a-date")
    assert updated.paid_amount == 0.0


@pytest.mark.asyncio
async def test_every_mutation_bumps_version(invoice, ledger):
    first = await ledger.record_payment(invoice.id, 10.0, "2026-02-08")
    assert first.version == 2
    second = await ledger.reverse_amount(invoice.id, 5.0, "2026-02-09")
    assert second.version == 3


@pytest.mark.asyncio
async def test_stale_write_raises_conflict(invoice, ledger, session_factory):
    # This session holds version 1 in its identity map
    await ledger.get_invoice(invoice.id)

    async with session_factory() as other_session:
        other = InvoiceLedger(other_session, timeout_seconds=5)
        await other.record_payment(invoice.id, 10.0, "2026-02-08")
        await other_session.commit()

    with pytest.raises(ConflictError):
        await ledger.record_payment(invoice.id, 10.0, "2026-02-08")


@pytest.mark.asyncio
async def test_list_and_count_by_type(ledger, db_session):
    first = await ledger.create_invoice("order-a", 10.0)
    await ledger.create_invoice("order-b", 20.0)
    await ledger.create_invoice("order-c", 30.0)
    await ledger.record_payment(first.id, 10.0, "2026-02-08")
    await ledger.reverse_all(first.id, "2026-02-09")
    await db_session.commit()

    assert await ledger.count_invoices() == 3
    assert await ledger.count_invoices(InvoiceType.PAYABLE) == 2
    receivable = await ledger.list_invoices(InvoiceType.RECEIVABLE)
    assert [i.order_id for i in receivable] == ["order-a"]

    page_one = await ledger.list_invoices(page=1, limit=2)
    page_two = await ledger.list_invoices(page=2, limit=2)
    assert len(page_one) == 2
    assert len(page_two) == 1

    # Out-of-range paging falls back to defaults
    assert len(await ledger.list_invoices(page=0, limit=0)) == 3


def test_validate_ledger_date_accepts_leap_day():
    assert validate_ledger_date("2028-02-29") == "2028-02-29"
    with pytest.raises(ValidationError):
        validate_ledger_date("2027-02-29")
