"""Service-level tests for the payment ledger operations in crud.payments."""

from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from crud import payments as crud_payments
from crud.payment_history import HistoryLedger
from exceptions import ConflictError, ConsistencyError, NotFoundError, PaymentValidationError
from models import PaymentInstallment, PaymentStatus, Program
from models.audit_mixin import now_local
from schemas.payments import (
    DueDateUpdate,
    ManualInvoiceCreate,
    ManualPaymentCreate,
    PaymentStatusUpdate,
)

ADMIN = "admin-1"


def today():
    return now_local().date()


def invoice(db, payment_id, number, amount, days=10):
    return crud_payments.issue_manual_invoice(
        db,
        payment_id,
        ManualInvoiceCreate(installment_number=number, amount=Decimal(str(amount)), due_date=today() + timedelta(days=days)),
        ADMIN,
    )


def pay(db, payment_id, status, amount, **kwargs):
    return crud_payments.record_payment(
        db,
        payment_id,
        PaymentStatusUpdate(status=status, amount_paid=Decimal(str(amount)), **kwargs),
        ADMIN,
    )


def history_count(db, payment_id):
    return HistoryLedger(db).count(payment_id)


def snapshot(db, payment_id):
    db.expire_all()
    payment = crud_payments.get_payment(db, payment_id)
    return (
        payment.status,
        payment.amount_paid,
        payment.current_installment_number,
        payment.receipt_number,
        payment.due_date,
        history_count(db, payment_id),
        len(payment.installments),
    )


@pytest.fixture
def payment(db, registration):
    return crud_payments.open_payment(db, registration.id, ADMIN)


class TestOpenPayment:

    def test_opens_pending_payment_at_program_cost(self, db, registration):
        payment = crud_payments.open_payment(db, registration.id, ADMIN, notes="Pendaftaran baru")

        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("4000000")
        assert payment.amount_paid == Decimal("0")
        assert payment.current_installment_number == 0
        assert payment.receipt_number is None
        assert payment.invoice_number.startswith("INV-")

        entries = HistoryLedger(db).entries(payment.id)
        assert len(entries) == 1
        assert entries[0].old_status is None
        assert entries[0].new_status == PaymentStatus.PENDING
        assert entries[0].changed_by == ADMIN

    def test_second_active_payment_is_a_conflict(self, db, registration, payment):
        with pytest.raises(ConflictError):
            crud_payments.open_payment(db, registration.id, ADMIN)

    def test_cancelled_payment_can_be_superseded(self, db, registration, payment):
        pay(db, payment.id, "cancelled", 0)
        replacement = crud_payments.open_payment(db, registration.id, ADMIN)
        assert replacement.id != payment.id
        assert replacement.status == PaymentStatus.PENDING

    def test_unknown_registration(self, db):
        with pytest.raises(NotFoundError):
            crud_payments.open_payment(db, 9999, ADMIN)


class TestInstallmentScenario:
    """Rp 4.000.000 paid over 4 installments, end to end."""

    def test_full_installment_plan(self, db, payment):
        result = invoice(db, payment.id, 1, 1000000)
        assert result.status == "installment_1"
        assert result.current_installment_number == 1

        result = pay(db, payment.id, "installment_1", 1000000)
        assert result.amount_paid == Decimal("1000000")
        assert result.status == "installment_1"
        assert result.receipt_number is None

        with pytest.raises(PaymentValidationError) as exc_info:
            invoice(db, payment.id, 3, 1000000)
        assert exc_info.value.expected == 2

        for number in (2, 3, 4):
            invoice(db, payment.id, number, 1000000)
            result = pay(db, payment.id, f"installment_{number}", 1000000)

        assert result.status == "paid"
        assert result.amount_paid == Decimal("4000000")
        assert result.current_installment_number == 0
        assert result.receipt_number.startswith("KWT-")

        db.expire_all()
        stored = crud_payments.get_payment(db, payment.id)
        assert stored.status == PaymentStatus.PAID
        assert stored.receipt_number == result.receipt_number
        assert sorted(stored.installment_amounts) == [f"installment_{n}" for n in (1, 2, 3, 4)]
        # open + 4 invoices + 4 payments
        assert history_count(db, payment.id) == 9

    def test_amount_paid_never_decreases(self, db, payment):
        seen = [Decimal("0")]
        for number in (1, 2):
            invoice(db, payment.id, number, 500000)
            seen.append(pay(db, payment.id, f"installment_{number}", 500000).amount_paid)
            seen.append(pay(db, payment.id, f"installment_{number}", 0).amount_paid)
        assert seen == sorted(seen)
        assert seen[-1] == Decimal("1000000")


class TestOverpayment:

    def test_rejected_and_state_unchanged(self, db, payment):
        before = snapshot(db, payment.id)

        with pytest.raises(PaymentValidationError) as exc_info:
            pay(db, payment.id, "installment_1", 5000000)

        assert "melebihi total tagihan" in exc_info.value.message
        assert "Rp 4.000.000" in exc_info.value.message
        assert snapshot(db, payment.id) == before

    def test_rejected_on_top_of_earlier_payments(self, db, payment):
        invoice(db, payment.id, 1, 3000000)
        pay(db, payment.id, "installment_1", 3000000)

        with pytest.raises(PaymentValidationError) as exc_info:
            pay(db, payment.id, "installment_1", 1500000)
        assert Decimal(exc_info.value.expected) == Decimal("1000000")

        db.expire_all()
        assert crud_payments.get_payment(db, payment.id).amount_paid == Decimal("3000000")

    def test_manual_payment_larger_than_total(self, db, registration):
        with pytest.raises(PaymentValidationError):
            crud_payments.create_manual_payment(
                db, ManualPaymentCreate(registration_id=registration.id, amount_paid=Decimal("5000000")), ADMIN
            )
        assert crud_payments.list_payments(db, registration_id=registration.id) == []


class TestAmountPrecision:
    """Amounts are whole sen (2 decimals); nothing finer reaches the ledger."""

    @pytest.mark.parametrize("amount", ["0.004", "1000000.001"])
    def test_payment_with_sub_sen_amount_is_refused(self, amount):
        with pytest.raises(ValidationError):
            PaymentStatusUpdate(status="installment_1", amount_paid=Decimal(amount))

    def test_invoice_and_manual_amounts_are_checked_too(self, registration):
        with pytest.raises(ValidationError):
            ManualInvoiceCreate(installment_number=1, amount=Decimal("250000.125"), due_date=today())
        with pytest.raises(ValidationError):
            ManualPaymentCreate(registration_id=registration.id, amount_paid=Decimal("0.004"))

    def test_result_history_and_row_agree(self, db, payment):
        invoice(db, payment.id, 1, "1000000.50")
        result = pay(db, payment.id, "installment_1", "1000000.50")

        db.expire_all()
        stored = crud_payments.get_payment(db, payment.id)
        last = HistoryLedger(db).entries(payment.id)[-1]
        assert result.amount_paid == stored.amount_paid == last.amount_changed == Decimal("1000000.50")
        assert HistoryLedger(db).has_paid_installment(payment.id, 1)


class TestIssueInvoice:

    def test_first_invoice_must_be_installment_1(self, db, payment):
        with pytest.raises(PaymentValidationError) as exc_info:
            invoice(db, payment.id, 2, 1000000)
        assert exc_info.value.expected == 1
        assert "Cicilan berikutnya yang diharapkan: 1" in exc_info.value.message

    def test_next_invoice_requires_paid_installment(self, db, payment):
        invoice(db, payment.id, 1, 1000000)
        before = snapshot(db, payment.id)

        with pytest.raises(PaymentValidationError) as exc_info:
            invoice(db, payment.id, 2, 1000000)
        assert exc_info.value.expected == "installment_1"
        assert snapshot(db, payment.id) == before

    def test_records_invoice_and_history(self, db, payment):
        invoice(db, payment.id, 1, 1250000, days=14)

        db.expire_all()
        stored = crud_payments.get_payment(db, payment.id)
        assert stored.status == PaymentStatus.of_installment(1)
        assert stored.is_manual_invoice is True
        assert stored.due_date == today() + timedelta(days=14)
        assert stored.next_due_date == stored.due_date
        assert stored.installment_amounts["installment_1"].amount == Decimal("1250000")
        assert "Manual Invoice: Cicilan 1 - Amount: Rp 1.250.000" in stored.notes

        last = HistoryLedger(db).entries(payment.id)[-1]
        assert last.old_status == PaymentStatus.PENDING
        assert last.new_status == PaymentStatus.of_installment(1)
        assert last.amount_changed == Decimal("0")

    @pytest.mark.parametrize("amount", [0, -1000])
    def test_amount_must_be_positive(self, db, payment, amount):
        with pytest.raises(PaymentValidationError, match="Amount harus lebih dari 0"):
            invoice(db, payment.id, 1, amount)

    def test_due_date_in_the_past(self, db, payment):
        before = snapshot(db, payment.id)
        with pytest.raises(PaymentValidationError, match="Due date harus di masa depan"):
            invoice(db, payment.id, 1, 1000000, days=-1)
        assert snapshot(db, payment.id) == before

    def test_due_today_is_accepted(self, db, payment):
        result = invoice(db, payment.id, 1, 1000000, days=0)
        assert result.due_date == today()

    def test_amount_above_outstanding_balance(self, db, payment):
        with pytest.raises(PaymentValidationError, match="melebihi sisa pembayaran"):
            invoice(db, payment.id, 1, 4000001)

    def test_installment_beyond_program_plan(self, db, make_registration):
        registration = make_registration(training_cost=3000000, installment_plan="2_installments")
        payment = crud_payments.open_payment(db, registration.id, ADMIN)
        for number in (1, 2):
            invoice(db, payment.id, number, 1000000)
            pay(db, payment.id, f"installment_{number}", 1000000)

        with pytest.raises(PaymentValidationError, match="maksimal 2 cicilan"):
            invoice(db, payment.id, 3, 1000000)

    def test_no_invoice_for_settled_payment(self, db, payment):
        invoice(db, payment.id, 1, 4000000)
        pay(db, payment.id, "installment_1", 4000000)
        with pytest.raises(PaymentValidationError):
            invoice(db, payment.id, 2, 1000)

    def test_unknown_payment(self, db):
        with pytest.raises(NotFoundError):
            invoice(db, 4242, 1, 1000000)


class TestRecordPayment:

    def test_cannot_move_on_before_paying(self, db, payment):
        invoice(db, payment.id, 1, 1000000)
        before = snapshot(db, payment.id)

        with pytest.raises(PaymentValidationError) as exc_info:
            pay(db, payment.id, "installment_2", 1000000)
        assert exc_info.value.expected == "installment_1"
        assert snapshot(db, payment.id) == before

    def test_negative_amount(self, db, payment):
        with pytest.raises(PaymentValidationError, match="tidak boleh negatif"):
            pay(db, payment.id, "installment_1", -5)

    def test_full_amount_auto_promotes_to_paid(self, db, payment):
        invoice(db, payment.id, 1, 4000000)
        result = pay(db, payment.id, "installment_1", 4000000)

        assert result.status == "paid"
        assert result.current_installment_number == 0
        assert result.receipt_number

    def test_settled_payment_is_stable(self, db, payment):
        invoice(db, payment.id, 1, 4000000)
        first = pay(db, payment.id, "installment_1", 4000000)

        again = pay(db, payment.id, "paid", 0)
        assert again.status == "paid"
        assert again.receipt_number == first.receipt_number

        with pytest.raises(PaymentValidationError):
            pay(db, payment.id, "paid", 1)

    def test_manual_partial_payment_gets_receipt(self, db, payment):
        invoice(db, payment.id, 1, 1000000)
        result = pay(
            db, payment.id, "installment_1", 1000000,
            is_manual=True, payment_method="cash", bank_name="BCA", account_number="123",
        )
        assert result.receipt_number.startswith("KWT-")
        assert result.is_manual

        db.expire_all()
        stored = crud_payments.get_payment(db, payment.id)
        assert stored.payment_method == "cash"
        assert stored.bank_name == "BCA"
        assert stored.payment_date == today()
        assert stored.verified_by == ADMIN

        # receipt numbers are assigned once
        invoice(db, payment.id, 2, 3000000)
        settled = pay(db, payment.id, "installment_2", 3000000, is_manual=True)
        assert settled.status == "paid"
        assert settled.receipt_number == result.receipt_number

    def test_cancel(self, db, payment):
        invoice(db, payment.id, 1, 1000000)
        result = pay(db, payment.id, "cancelled", 0, notes="Peserta mengundurkan diri")

        assert result.status == "cancelled"
        assert result.current_installment_number == 0
        assert result.receipt_number is None

    def test_history_entry_per_change(self, db, payment):
        invoice(db, payment.id, 1, 1000000)
        pay(db, payment.id, "installment_1", 600000)
        pay(db, payment.id, "installment_1", 400000, notes="Pelunasan cicilan 1")

        entries = HistoryLedger(db).entries(payment.id)
        assert len(entries) == 4
        last = entries[-1]
        assert last.old_amount_paid == Decimal("600000")
        assert last.new_amount_paid == Decimal("1000000")
        assert last.amount_changed == Decimal("400000")
        assert last.notes == "Pelunasan cicilan 1"

    def test_total_follows_program_cost(self, db, payment, program):
        program.training_cost = Decimal("4500000")
        db.commit()

        # reads leave the stored total alone
        detail = crud_payments.get_payment_with_history(db, payment.id)
        assert detail.payment.amount == Decimal("4000000")
        assert detail.program_training_cost == Decimal("4500000")

        invoice(db, payment.id, 1, 4500000)
        result = pay(db, payment.id, "installment_1", 4500000)
        assert result.status == "paid"

        db.expire_all()
        assert crud_payments.get_payment(db, payment.id).amount == Decimal("4500000")

    def test_commit_failure_rolls_back(self, db, payment, monkeypatch):
        invoice(db, payment.id, 1, 1000000)
        before = snapshot(db, payment.id)

        def broken_append(self, *args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(HistoryLedger, "append", broken_append)
        with pytest.raises(ConsistencyError):
            pay(db, payment.id, "installment_1", 1000000)
        monkeypatch.undo()

        assert snapshot(db, payment.id) == before


class TestManualPayment:

    def test_creates_payment_when_none_exists(self, db, registration):
        result = crud_payments.create_manual_payment(
            db,
            ManualPaymentCreate(registration_id=registration.id, amount_paid=Decimal("1000000"), payment_method="cash"),
            ADMIN,
        )
        assert result.status == "installment_1"
        assert result.current_installment_number == 1
        assert result.receipt_number.startswith("KWT-")

        entries = HistoryLedger(db).entries(result.payment_id)
        assert len(entries) == 1
        assert entries[0].old_status is None
        assert entries[0].amount_changed == Decimal("1000000")

    def test_full_amount_creates_paid_payment(self, db, registration):
        result = crud_payments.create_manual_payment(
            db, ManualPaymentCreate(registration_id=registration.id, amount_paid=Decimal("4000000")), ADMIN
        )
        assert result.status == "paid"
        assert result.current_installment_number == 0
        assert result.receipt_number

    def test_applies_to_existing_pending_payment(self, db, registration, payment):
        result = crud_payments.create_manual_payment(
            db,
            ManualPaymentCreate(
                registration_id=registration.id,
                amount_paid=Decimal("1000000"),
                payment_method="transfer",
                bank_name="Mandiri",
            ),
            ADMIN,
        )
        assert result.payment_id == payment.id
        assert result.status == "installment_1"
        assert result.amount_paid == Decimal("1000000")
        assert result.receipt_number
        assert history_count(db, payment.id) == 2

    def test_existing_payment_still_cannot_skip(self, db, registration, payment):
        invoice(db, payment.id, 1, 1000000)
        before = snapshot(db, payment.id)
        with pytest.raises(PaymentValidationError):
            crud_payments.create_manual_payment(
                db,
                ManualPaymentCreate(
                    registration_id=registration.id, amount_paid=Decimal("1000000"), status="installment_3"
                ),
                ADMIN,
            )
        assert snapshot(db, payment.id) == before

    @pytest.mark.parametrize("amount", ["0", "-10"])
    def test_amount_must_be_positive(self, db, registration, amount):
        with pytest.raises(PaymentValidationError, match="greater than 0"):
            crud_payments.create_manual_payment(
                db, ManualPaymentCreate(registration_id=registration.id, amount_paid=Decimal(amount)), ADMIN
            )

    def test_unknown_registration(self, db):
        with pytest.raises(NotFoundError):
            crud_payments.create_manual_payment(
                db, ManualPaymentCreate(registration_id=777, amount_paid=Decimal("1000")), ADMIN
            )


class TestDueDate:

    def test_sets_due_date_without_changing_status(self, db, payment):
        due = today() + timedelta(days=7)
        updated = crud_payments.issue_due_date(db, payment.id, DueDateUpdate(due_date=due, notes="Tagihan pertama"), ADMIN)

        assert updated.due_date == due
        assert updated.next_due_date == due
        assert updated.status == PaymentStatus.PENDING
        assert "Tagihan pertama" in updated.notes

        last = HistoryLedger(db).entries(payment.id)[-1]
        assert last.old_status == last.new_status == PaymentStatus.PENDING
        assert last.amount_changed == Decimal("0")

    def test_moves_current_installment_due_date(self, db, payment):
        invoice(db, payment.id, 1, 1000000, days=5)
        due = today() + timedelta(days=20)
        crud_payments.issue_due_date(db, payment.id, DueDateUpdate(due_date=due), ADMIN)

        row = db.query(PaymentInstallment).filter(PaymentInstallment.payment_id == payment.id).one()
        assert row.due_date == due

    def test_past_due_date_rejected(self, db, payment):
        before = snapshot(db, payment.id)
        with pytest.raises(PaymentValidationError) as exc_info:
            crud_payments.issue_due_date(db, payment.id, DueDateUpdate(due_date=today() - timedelta(days=1)), ADMIN)
        assert exc_info.value.expected == f">= {today().isoformat()}"
        assert snapshot(db, payment.id) == before

    def test_settled_payment_rejected(self, db, payment):
        invoice(db, payment.id, 1, 4000000)
        pay(db, payment.id, "installment_1", 4000000)
        with pytest.raises(PaymentValidationError):
            crud_payments.issue_due_date(db, payment.id, DueDateUpdate(due_date=today()), ADMIN)


class TestReads:

    def test_detail_counts_installments(self, db, payment):
        invoice(db, payment.id, 1, 1000000)
        pay(db, payment.id, "installment_1", 1000000)

        detail = crud_payments.get_payment_with_history(db, payment.id)
        assert detail.total_installments == 4
        assert detail.remaining_installments == 3
        assert detail.program_training_cost == Decimal("4000000")
        assert [entry.new_status for entry in detail.history] == ["pending", "installment_1", "installment_1"]
        assert detail.payment.status == "installment_1"
        assert set(detail.payment.installment_amounts) == {"installment_1"}

    def test_paid_payment_has_nothing_remaining(self, db, payment):
        invoice(db, payment.id, 1, 4000000)
        pay(db, payment.id, "installment_1", 4000000)
        assert crud_payments.get_payment_with_history(db, payment.id).remaining_installments == 0

    def test_detail_of_unknown_payment(self, db):
        with pytest.raises(NotFoundError):
            crud_payments.get_payment_with_history(db, 31337)

    def test_list_filters(self, db, payment, make_registration):
        other = crud_payments.open_payment(db, make_registration().id, ADMIN)
        invoice(db, other.id, 1, 1000000)

        pending = crud_payments.list_payments(db, status=PaymentStatus.PENDING)
        assert [p.id for p in pending] == [payment.id]

        first_installment = crud_payments.list_payments(db, status=PaymentStatus.of_installment(1))
        assert [p.id for p in first_installment] == [other.id]

        assert len(crud_payments.list_payments(db)) == 2
        assert len(crud_payments.list_payments(db, limit=1)) == 1

    def test_list_by_program_search_and_date(self, db, payment, program, make_registration):
        elsewhere = make_registration(training_cost=6000000, installment_plan="6_installments")
        other = crud_payments.open_payment(db, elsewhere.id, ADMIN)

        def ids(**filters):
            return sorted(p.id for p in crud_payments.list_payments(db, **filters))

        assert ids(program_id=program.id) == [payment.id]
        assert ids(program_id=elsewhere.program_id) == [other.id]

        assert ids(search=payment.invoice_number[-8:].lower()) == [payment.id]
        assert ids(search="reg-0001") == [payment.id]
        assert ids(search="siti") == [payment.id]
        assert ids(search="Peserta") == [other.id]
        assert ids(search="tidak-ada") == []

        assert ids(start_date=today(), end_date=today()) == sorted([payment.id, other.id])
        assert ids(start_date=today() + timedelta(days=1)) == []
        assert ids(end_date=today() - timedelta(days=1)) == []
        assert ids(program_id=program.id, start_date=today(), search="REG") == [payment.id]

    def test_attach_proof_keeps_history(self, db, payment):
        count = history_count(db, payment.id)
        updated = crud_payments.attach_proof(db, payment.id, "s3://bucket/payments/1/proof.png", "student-7")

        assert updated.proof_image == "s3://bucket/payments/1/proof.png"
        assert updated.status == PaymentStatus.PENDING
        assert history_count(db, payment.id) == count


def test_program_without_plan_defaults_to_four(db, make_registration):
    registration = make_registration(training_cost=2000000, installment_plan=None)
    payment = crud_payments.open_payment(db, registration.id, ADMIN)
    assert crud_payments.get_payment_with_history(db, payment.id).total_installments == 4
    assert db.query(Program).count() == 2
