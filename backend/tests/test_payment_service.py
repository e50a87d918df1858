"""
Bill payment ledger tests.

Checks the derived remaining/status fields against the sum of entries after
every mutation, plus overpayment and already-paid rejection.
"""

import pytest

from unitpos.errors import AlreadyPaid, BillNotFound, OverpaymentRejected, PaymentEntryNotFound
from unitpos.extensions import db
from unitpos.models import Bill, PaymentEntry
from unitpos.services import bill_service, payment_service


@pytest.fixture
def bill(db_session, customer, order):
    return bill_service.create_bill(10_000, customer_id=customer.id, order_id=order.id, invoice_number="INV-0001")


def _reload(bill_id):
    db.session.expire_all()
    return db.session.get(Bill, bill_id)


def _assert_ledger_consistent(bill_id):
    bill = _reload(bill_id)
    paid = sum(e.amount_cents for e in db.session.query(PaymentEntry).filter_by(bill_id=bill_id))
    assert paid + bill.remaining_cents == bill.total_cents
    assert bill.remaining_cents >= 0
    assert bill.payment_status == payment_service.derive_payment_status(bill.total_cents, paid)


class TestDeriveStatus:
    def test_statuses(self):
        assert payment_service.derive_payment_status(100, 0) == "pending"
        assert payment_service.derive_payment_status(100, 40) == "partial"
        assert payment_service.derive_payment_status(100, 100) == "paid"
        assert payment_service.derive_payment_status(100, 101) == "paid"

    def test_zero_total_is_paid(self):
        assert payment_service.derive_payment_status(0, 0) == "paid"


class TestCreatePaymentEntry:
    def test_scenario_two_halves_then_already_paid(self, db_session, bill):
        payment_service.create_payment_entry(bill.id, 5_000)
        current = _reload(bill.id)
        assert current.remaining_cents == 5_000
        assert current.payment_status == "partial"

        payment_service.create_payment_entry(bill.id, 5_000, payment_method="upi", utr_number="UTR123")
        current = _reload(bill.id)
        assert current.remaining_cents == 0
        assert current.payment_status == "paid"
        version = current.version_id

        with pytest.raises(AlreadyPaid):
            payment_service.create_payment_entry(bill.id, 1_000)

        current = _reload(bill.id)
        assert current.remaining_cents == 0
        assert current.version_id == version
        assert db_session.query(PaymentEntry).filter_by(bill_id=bill.id).count() == 2

    def test_overpayment_rejected_and_bill_unchanged(self, db_session, bill):
        payment_service.create_payment_entry(bill.id, 7_000)
        before = _reload(bill.id)
        version, remaining = before.version_id, before.remaining_cents

        with pytest.raises(OverpaymentRejected) as exc_info:
            payment_service.create_payment_entry(bill.id, 3_002)
        assert exc_info.value.remaining_cents == 3_000
        assert "3000" in str(exc_info.value)

        after = _reload(bill.id)
        assert after.version_id == version
        assert after.remaining_cents == remaining
        assert db_session.query(PaymentEntry).filter_by(bill_id=bill.id).count() == 1

    def test_within_tolerance_settles_bill(self, db_session, bill):
        payment_service.create_payment_entry(bill.id, 10_001)
        current = _reload(bill.id)
        assert current.remaining_cents == 0
        assert current.payment_status == "paid"

    def test_customer_defaults_to_bill_customer(self, db_session, bill, customer):
        entry = payment_service.create_payment_entry(bill.id, 1_000)
        assert entry.customer_id == customer.id

    def test_walk_in_bill(self, db_session):
        walk_in = bill_service.create_bill(2_500)
        entry = payment_service.create_payment_entry(walk_in.id, 2_500, payment_method="card")
        assert entry.customer_id is None
        assert _reload(walk_in.id).payment_status == "paid"

    def test_validation(self, db_session, bill):
        with pytest.raises(ValueError):
            payment_service.create_payment_entry(bill.id, 0)
        with pytest.raises(ValueError):
            payment_service.create_payment_entry(bill.id, 10.5)
        with pytest.raises(ValueError):
            payment_service.create_payment_entry(bill.id, 100, payment_method="barter")

    def test_unknown_bill(self, db_session):
        with pytest.raises(BillNotFound):
            payment_service.create_payment_entry(424242, 100)


class TestEditAndDelete:
    def test_invariant_holds_across_mutations(self, db_session, bill):
        first = payment_service.create_payment_entry(bill.id, 3_000)
        _assert_ledger_consistent(bill.id)

        second = payment_service.create_payment_entry(bill.id, 2_000, payment_method="cheque")
        _assert_ledger_consistent(bill.id)

        payment_service.update_payment_entry(first.id, {"amount_cents": 8_000})
        _assert_ledger_consistent(bill.id)
        assert _reload(bill.id).payment_status == "paid"

        payment_service.delete_payment_entry(second.id)
        _assert_ledger_consistent(bill.id)
        current = _reload(bill.id)
        assert current.remaining_cents == 2_000
        assert current.payment_status == "partial"

        payment_service.delete_payment_entry(first.id)
        _assert_ledger_consistent(bill.id)
        assert _reload(bill.id).payment_status == "pending"

    def test_update_overpayment_rejected(self, db_session, bill):
        first = payment_service.create_payment_entry(bill.id, 4_000)
        payment_service.create_payment_entry(bill.id, 4_000)

        with pytest.raises(OverpaymentRejected) as exc_info:
            payment_service.update_payment_entry(first.id, {"amount_cents": 7_000})
        assert exc_info.value.remaining_cents == 6_000

        db.session.expire_all()
        assert db.session.get(PaymentEntry, first.id).amount_cents == 4_000
        _assert_ledger_consistent(bill.id)

    def test_update_non_amount_fields(self, db_session, bill):
        entry = payment_service.create_payment_entry(bill.id, 1_000)
        updated = payment_service.update_payment_entry(entry.id, {"payment_method": "upi", "reference_number": "R-9"})
        assert updated.payment_method == "upi"
        assert updated.reference_number == "R-9"

    def test_update_rejects_unknown_fields(self, db_session, bill):
        entry = payment_service.create_payment_entry(bill.id, 1_000)
        with pytest.raises(ValueError):
            payment_service.update_payment_entry(entry.id, {"bill_id": 99})

    def test_missing_entry(self, db_session):
        with pytest.raises(PaymentEntryNotFound):
            payment_service.update_payment_entry(424242, {"notes": "x"})
        with pytest.raises(PaymentEntryNotFound):
            payment_service.delete_payment_entry(424242)

    def test_recompute_repairs_drift(self, db_session, bill):
        payment_service.create_payment_entry(bill.id, 2_500)
        db_session.query(Bill).filter_by(id=bill.id).update(
            {Bill.remaining_cents: 10_000, Bill.payment_status: "pending"}, synchronize_session=False
        )
        db_session.commit()

        repaired = payment_service.recompute_bill_status(bill.id)
        assert repaired.remaining_cents == 7_500
        assert repaired.payment_status == "partial"


class TestSummary:
    def test_summary(self, db_session, bill):
        payment_service.create_payment_entry(bill.id, 1_000)
        payment_service.create_payment_entry(bill.id, 2_000, payment_method="card")

        summary = payment_service.get_bill_payment_summary(bill.id)
        assert summary["paid_cents"] == 3_000
        assert summary["remaining_cents"] == 7_000
        assert summary["entry_count"] == 2
        assert [e["amount_cents"] for e in summary["entries"]] == [1_000, 2_000]

    def test_list_by_customer(self, db_session, bill, customer):
        payment_service.create_payment_entry(bill.id, 1_000)
        assert len(payment_service.list_payment_entries(customer_id=customer.id)) == 1
        assert payment_service.list_payment_entries(customer_id=customer.id + 1) == []
