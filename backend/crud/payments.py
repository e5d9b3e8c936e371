"""
Payment ledger operations.

Every mutating function here runs as one transaction on the caller's
session: the payment row is re-read under a row lock, all rules are checked,
then the row and exactly one history entry are written and committed. Any
failure rolls the session back before commit, so a rejected call leaves
nothing behind.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from crud.payment_history import HistoryLedger
from crud.payment_validation import StatusTransitionValidator
from crud.registrations import ProgramTerms, get_program_terms
from exceptions import ConflictError, ConsistencyError, NotFoundError, PaymentValidationError
from models.audit_mixin import APP_TIMEZONE, now_local
from models.payment_installments import PaymentInstallment
from models.payment_status import MAX_INSTALLMENTS, PaymentStatus, StatusKind
from models.payments import Payment
from models.registrations import Registration
from schemas.payments import (
    DueDateUpdate,
    InvoiceResult,
    ManualInvoiceCreate,
    ManualPaymentCreate,
    Payment as PaymentSchema,
    PaymentDetail,
    PaymentHistory as PaymentHistorySchema,
    PaymentResult,
    PaymentStatusUpdate,
)
from utils.formatting import format_rupiah
from utils.identifiers import generate_invoice_number, generate_receipt_number
from utils.installments import resolve_total_installments

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DEFAULT_PAYMENT_METHOD = "transfer"


@contextmanager
def payment_transaction(db: Session, operation: str):
    """Commit on success, roll back on any error. SQLAlchemy failures surface as ConsistencyError."""
    try:
        yield
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception(f"{operation} failed, transaction rolled back")
        raise ConsistencyError("Internal server error") from e
    except Exception:
        db.rollback()
        raise


def _today() -> date:
    return now_local().date()


def _lock_payment(db: Session, payment_id: int) -> Payment:
    payment = db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


def _program_terms(db: Session, registration_id: int) -> ProgramTerms:
    terms = get_program_terms(db, registration_id)
    if terms is None:
        raise NotFoundError("Registration not found")
    return terms


def _active_payment(db: Session, registration_id: int) -> Optional[Payment]:
    return (
        db.query(Payment)
        .filter(Payment.registration_id == registration_id, Payment.status != PaymentStatus.CANCELLED)
        .order_by(Payment.id.desc())
        .with_for_update()
        .first()
    )


def _sync_amount(payment: Payment, terms: ProgramTerms):
    if payment.amount is None or Decimal(payment.amount) != terms.training_cost:
        logger.info(
            f"Payment {payment.id}: total synced to program cost {terms.training_cost} (was {payment.amount})"
        )
        payment.amount = terms.training_cost


def _check_due_date(due_date: date):
    today = _today()
    if due_date is None:
        raise PaymentValidationError("Due date harus diisi")
    if due_date < today:
        raise PaymentValidationError("Due date harus di masa depan", expected=f">= {today.isoformat()}")


def _append_note(existing: Optional[str], note: str) -> str:
    return f"{existing or ''} | {note}" if existing else note


def _status_for_paid_fraction(paid: Decimal, total: Decimal) -> PaymentStatus:
    if paid >= total:
        return PaymentStatus.PAID
    if paid > 0:
        return PaymentStatus.of_installment(1)
    return PaymentStatus.PENDING


def _receipt_due(status: PaymentStatus, incoming: Decimal, is_manual: bool) -> bool:
    """
    Whether a payment without a receipt should get one now.

    Settling into ``paid`` always issues one. A manual (cash/transfer
    recorded by an admin) entry that moves real money into an open
    installment issues one too, so partial cash payments get a kwitansi.
    """
    if status.kind is StatusKind.PAID:
        return True
    return is_manual and incoming > 0 and status.kind not in (StatusKind.PENDING, StatusKind.CANCELLED)


def _check_invariants(payment: Payment):
    if Decimal(payment.amount_paid) > Decimal(payment.amount):
        raise ConsistencyError(
            f"Payment {payment.id}: amount_paid {payment.amount_paid} exceeds amount {payment.amount}"
        )
    if payment.current_installment_number != payment.status.installment_counter:
        raise ConsistencyError(
            f"Payment {payment.id}: installment counter {payment.current_installment_number} "
            f"does not match status {payment.status.code}"
        )


def _overpayment_error(total: Decimal, already_paid: Decimal) -> PaymentValidationError:
    allowed = total - already_paid
    return PaymentValidationError(
        f"Jumlah pembayaran melebihi total tagihan. Total: {format_rupiah(total)}, "
        f"Sudah dibayar: {format_rupiah(already_paid)}, Maksimal: {format_rupiah(allowed)}",
        expected=str(allowed),
    )


def open_payment(db: Session, registration_id: int, actor: str, notes: Optional[str] = None) -> Payment:
    """Creates the pending payment for a new registration (called by the registration flow)."""
    with payment_transaction(db, "open_payment"):
        terms = _program_terms(db, registration_id)
        active = _active_payment(db, registration_id)
        if active is not None:
            raise ConflictError(
                f"Registration {registration_id} already has an active payment ({active.invoice_number})"
            )

        payment = Payment(
            registration_id=registration_id,
            invoice_number=generate_invoice_number(),
            status=PaymentStatus.PENDING,
            amount=terms.training_cost,
            amount_paid=ZERO,
            current_installment_number=0,
            is_manual_invoice=False,
            notes=notes,
            created_by=actor,
        )
        db.add(payment)
        db.flush()

        HistoryLedger(db).append(
            payment.id,
            None,
            PaymentStatus.PENDING,
            old_amount_paid=ZERO,
            new_amount_paid=ZERO,
            notes=notes or f"Invoice {payment.invoice_number} dibuat",
            changed_by=actor,
        )

    db.refresh(payment)
    logger.info(f"Payment {payment.id} ({payment.invoice_number}) opened for registration {registration_id} by {actor}")
    return payment


def issue_manual_invoice(db: Session, payment_id: int, invoice: ManualInvoiceCreate, actor: str) -> InvoiceResult:
    """
    Issues the invoice for the next installment and moves the payment onto it.

    The installment must be exactly the next one, within the program's plan,
    and the previous installment must already be paid according to the ledger.
    """
    number = invoice.installment_number
    with payment_transaction(db, "issue_manual_invoice"):
        payment = _lock_payment(db, payment_id)
        terms = _program_terms(db, payment.registration_id)
        total_installments = terms.total_installments
        current = payment.status

        if current.kind is StatusKind.PENDING:
            expected = 1
        elif current.is_installment:
            expected = current.installment + 1
        else:
            raise PaymentValidationError(
                f"Tidak dapat membuat invoice untuk pembayaran berstatus {current.label}"
            )

        if number != expected:
            raise PaymentValidationError(
                f"Tidak dapat membuat invoice untuk cicilan {number}. "
                f"Cicilan berikutnya yang diharapkan: {expected}.",
                expected=expected,
            )

        if number > min(total_installments, MAX_INSTALLMENTS):
            raise PaymentValidationError(
                f"Tidak dapat membuat cicilan {number}. "
                f"Program ini maksimal {min(total_installments, MAX_INSTALLMENTS)} cicilan.",
                expected=min(total_installments, MAX_INSTALLMENTS),
            )

        ledger = HistoryLedger(db)
        if number > 1 and not ledger.has_paid_installment(payment.id, number - 1):
            raise PaymentValidationError(
                f"Tidak dapat membuat invoice cicilan {number}. Cicilan {number - 1} belum dibayar.",
                expected=f"installment_{number - 1}",
            )

        if invoice.amount is None or invoice.amount <= 0:
            raise PaymentValidationError("Amount harus lebih dari 0")

        _sync_amount(payment, terms)
        outstanding = Decimal(payment.amount) - Decimal(payment.amount_paid or 0)
        if invoice.amount > outstanding:
            raise PaymentValidationError(
                f"Jumlah tagihan melebihi sisa pembayaran. Sisa: {format_rupiah(outstanding)}",
                expected=str(outstanding),
            )

        _check_due_date(invoice.due_date)

        new_status = PaymentStatus.of_installment(number)
        db.add(PaymentInstallment(
            payment_id=payment.id,
            installment_number=number,
            amount=invoice.amount,
            due_date=invoice.due_date,
            notes=invoice.notes,
            created_by=actor,
        ))

        summary = f"Cicilan {number} - Amount: {format_rupiah(invoice.amount)} - Due: {invoice.due_date.isoformat()}"
        payment.status = new_status
        payment.due_date = invoice.due_date
        payment.next_due_date = invoice.due_date
        payment.current_installment_number = number
        payment.is_manual_invoice = True
        payment.notes = _append_note(payment.notes, f"Manual Invoice: {summary}")
        payment.updated_at = now_local()
        payment.updated_by = actor

        ledger.append(
            payment.id,
            current,
            new_status,
            old_amount_paid=payment.amount_paid,
            new_amount_paid=payment.amount_paid,
            amount_changed=ZERO,
            notes=f"Manual invoice created: {summary} - {invoice.notes or ''}".rstrip(" -"),
            changed_by=actor,
        )

    logger.info(f"Invoice for installment {number} of payment {payment_id} issued by {actor}")
    return InvoiceResult(
        payment_id=payment_id,
        status=new_status,
        installment_number=number,
        amount=invoice.amount,
        due_date=invoice.due_date,
        current_installment_number=number,
    )


def issue_due_date(db: Session, payment_id: int, update: DueDateUpdate, actor: str) -> Payment:
    """Issues the bill for the current installment by fixing its due date. Status is unchanged."""
    with payment_transaction(db, "issue_due_date"):
        payment = _lock_payment(db, payment_id)
        if payment.status.is_closed:
            raise PaymentValidationError(
                f"Tidak dapat menerbitkan tagihan untuk pembayaran berstatus {payment.status.label}"
            )
        _check_due_date(update.due_date)

        payment.due_date = update.due_date
        payment.next_due_date = update.due_date
        if payment.status.is_installment:
            current_invoice = (
                db.query(PaymentInstallment)
                .filter(
                    PaymentInstallment.payment_id == payment.id,
                    PaymentInstallment.installment_number == payment.status.installment,
                )
                .first()
            )
            if current_invoice is not None:
                current_invoice.due_date = update.due_date

        note = f"Tagihan diterbitkan - jatuh tempo {update.due_date.isoformat()}"
        if update.notes:
            note = f"{note} - {update.notes}"
        payment.notes = _append_note(payment.notes, note)
        payment.updated_at = now_local()
        payment.updated_by = actor

        HistoryLedger(db).append(
            payment.id,
            payment.status,
            payment.status,
            old_amount_paid=payment.amount_paid,
            new_amount_paid=payment.amount_paid,
            amount_changed=ZERO,
            notes=note,
            changed_by=actor,
        )

    db.refresh(payment)
    logger.info(f"Due date of payment {payment_id} set to {update.due_date} by {actor}")
    return payment


def _apply_payment(
    db: Session,
    payment: Payment,
    terms: ProgramTerms,
    update: PaymentStatusUpdate,
    actor: str,
) -> PaymentResult:
    incoming = update.amount_paid if update.amount_paid is not None else ZERO
    if incoming < 0:
        raise PaymentValidationError("Jumlah pembayaran tidak boleh negatif")

    total_amount = terms.training_cost
    current_paid = Decimal(payment.amount_paid or 0)
    new_total = current_paid + incoming
    current = payment.status
    requested = PaymentStatus.from_code(update.status)

    ledger = HistoryLedger(db)
    validation = StatusTransitionValidator(ledger).validate(
        payment.id, current, requested, terms.total_installments
    )
    if not validation.valid:
        logger.warning(
            f"Payment {payment.id}: transition {current.code} -> {requested.code} rejected: {validation.error}"
        )
        raise PaymentValidationError(validation.error, expected=validation.expected)

    if new_total > total_amount:
        logger.warning(f"Payment {payment.id}: overpayment rejected ({new_total} > {total_amount})")
        raise _overpayment_error(total_amount, current_paid)

    final_status = requested
    installment_number = requested.installment_counter
    if new_total >= total_amount and requested.kind is not StatusKind.CANCELLED:
        final_status = PaymentStatus.PAID
        installment_number = 0

    receipt_number = payment.receipt_number
    if not receipt_number and _receipt_due(final_status, incoming, update.is_manual):
        receipt_number = generate_receipt_number()

    now = now_local()
    _sync_amount(payment, terms)
    payment.status = final_status
    payment.amount_paid = new_total
    payment.receipt_number = receipt_number
    payment.current_installment_number = installment_number
    if update.notes is not None:
        payment.notes = update.notes
    payment.verified_by = actor
    payment.verified_at = now
    if update.is_manual:
        payment.payment_method = update.payment_method or DEFAULT_PAYMENT_METHOD
        payment.bank_name = update.bank_name
        payment.account_number = update.account_number
        payment.payment_date = update.payment_date or now.date()
    payment.updated_at = now
    payment.updated_by = actor
    _check_invariants(payment)

    if update.notes:
        history_notes = update.notes
    elif update.is_manual:
        history_notes = f"Manual payment: {format_rupiah(incoming)} - Status: {final_status.code}"
    else:
        history_notes = (
            f"Status berubah dari {current.code} ke {final_status.code} - Pembayaran: {format_rupiah(incoming)}"
        )

    ledger.append(
        payment.id,
        current,
        final_status,
        old_amount_paid=current_paid,
        new_amount_paid=new_total,
        amount_changed=incoming,
        notes=history_notes,
        changed_by=actor,
    )

    return PaymentResult(
        payment_id=payment.id,
        invoice_number=payment.invoice_number,
        receipt_number=receipt_number,
        status=final_status,
        amount_paid=new_total,
        current_installment_number=installment_number,
        due_date=payment.due_date,
        is_manual=update.is_manual,
    )


def record_payment(db: Session, payment_id: int, update: PaymentStatusUpdate, actor: str) -> PaymentResult:
    """
    Applies a verified payment and/or status change to a payment.

    The amount is added to what was already paid. Reaching the program's
    training cost settles the payment as ``paid`` whatever status was asked
    for (except ``cancelled``), and issues the receipt number once.
    """
    with payment_transaction(db, "record_payment"):
        payment = _lock_payment(db, payment_id)
        terms = _program_terms(db, payment.registration_id)
        result = _apply_payment(db, payment, terms, update, actor)

    logger.info(
        f"Payment {payment_id} updated to {result.status} (paid {result.amount_paid}) by {actor}"
        + (" (manual)" if update.is_manual else "")
    )
    return result


def create_manual_payment(db: Session, data: ManualPaymentCreate, actor: str) -> PaymentResult:
    """
    Records a payment taken outside the proof-upload flow (cash, direct transfer).

    When the registration already has an active payment, the amount goes through
    the same validation as ``record_payment``. Otherwise a new payment row is
    created with its status derived from how much of the total was paid.
    """
    if data.amount_paid is None or data.amount_paid <= 0:
        raise PaymentValidationError("Amount paid must be greater than 0")

    with payment_transaction(db, "create_manual_payment"):
        terms = _program_terms(db, data.registration_id)
        existing = _active_payment(db, data.registration_id)

        if existing is not None:
            target = PaymentStatus.from_code(data.status)
            if target.kind is StatusKind.PENDING:
                if existing.status.kind is StatusKind.PENDING:
                    target = PaymentStatus.of_installment(1)
                else:
                    target = existing.status
            if data.due_date is not None:
                existing.due_date = data.due_date
            result = _apply_payment(
                db,
                existing,
                terms,
                PaymentStatusUpdate(
                    status=target,
                    amount_paid=data.amount_paid,
                    notes=data.notes,
                    is_manual=True,
                    payment_method=data.payment_method,
                    bank_name=data.bank_name,
                    account_number=data.account_number,
                    payment_date=data.payment_date,
                ),
                actor,
            )
            created = False
        else:
            total_amount = terms.training_cost
            if data.amount_paid > total_amount:
                raise _overpayment_error(total_amount, ZERO)

            status = _status_for_paid_fraction(data.amount_paid, total_amount)
            receipt_number = generate_receipt_number() if _receipt_due(status, data.amount_paid, True) else None
            now = now_local()
            payment = Payment(
                registration_id=data.registration_id,
                invoice_number=generate_invoice_number(),
                status=status,
                amount=total_amount,
                amount_paid=data.amount_paid,
                current_installment_number=status.installment_counter,
                payment_method=data.payment_method or DEFAULT_PAYMENT_METHOD,
                bank_name=data.bank_name,
                account_number=data.account_number,
                payment_date=data.payment_date or now.date(),
                due_date=data.due_date,
                receipt_number=receipt_number,
                notes=data.notes,
                verified_by=actor,
                verified_at=now,
                created_by=actor,
            )
            db.add(payment)
            db.flush()

            HistoryLedger(db).append(
                payment.id,
                None,
                status,
                old_amount_paid=ZERO,
                new_amount_paid=data.amount_paid,
                amount_changed=data.amount_paid,
                notes=data.notes or "Manual payment created",
                changed_by=actor,
            )
            result = PaymentResult(
                payment_id=payment.id,
                invoice_number=payment.invoice_number,
                receipt_number=receipt_number,
                status=status,
                amount_paid=data.amount_paid,
                current_installment_number=status.installment_counter,
                due_date=data.due_date,
                is_manual=True,
            )
            created = True

    logger.info(
        f"Manual payment of {data.amount_paid} for registration {data.registration_id} "
        f"{'created payment' if created else 'applied to payment'} {result.payment_id} by {actor}"
    )
    return result


def attach_proof(db: Session, payment_id: int, image_path: str, actor: Optional[str] = None) -> Payment:
    """Records where the uploaded proof-of-payment image is stored. It awaits admin verification."""
    with payment_transaction(db, "attach_proof"):
        payment = _lock_payment(db, payment_id)
        payment.proof_image = image_path
        payment.updated_at = now_local()
        payment.updated_by = actor

    db.refresh(payment)
    logger.info(f"Proof image attached to payment {payment_id}: {image_path}")
    return payment


def get_payment(db: Session, payment_id: int) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.id == payment_id).first()


def get_payment_with_history(db: Session, payment_id: int) -> PaymentDetail:
    payment = get_payment(db, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found")

    terms = get_program_terms(db, payment.registration_id)
    total_installments = terms.total_installments if terms else resolve_total_installments(None)
    if payment.status.kind is StatusKind.PAID:
        remaining = 0
    else:
        remaining = max(total_installments - (payment.current_installment_number or 0), 0)

    history = HistoryLedger(db).entries(payment.id)
    return PaymentDetail(
        payment=PaymentSchema.model_validate(payment),
        history=[PaymentHistorySchema.model_validate(entry) for entry in history],
        total_installments=total_installments,
        remaining_installments=remaining,
        program_training_cost=terms.training_cost if terms else None,
    )


def _start_of_day(day: date) -> datetime:
    return APP_TIMEZONE.localize(datetime.combine(day, time.min))


def list_payments(
    db: Session,
    status: Optional[PaymentStatus] = None,
    registration_id: Optional[int] = None,
    program_id: Optional[int] = None,
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Payment]:
    """
    Payments newest first.

    ``search`` matches invoice number, registration code or participant name.
    ``start_date``/``end_date`` bound the creation date (both days inclusive,
    application timezone).
    """
    query = db.query(Payment).join(Registration, Payment.registration_id == Registration.id)
    if status is not None:
        query = query.filter(Payment.status == status)
    if registration_id is not None:
        query = query.filter(Payment.registration_id == registration_id)
    if program_id is not None:
        query = query.filter(Registration.program_id == program_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Payment.invoice_number.ilike(pattern),
            Registration.registration_code.ilike(pattern),
            Registration.full_name.ilike(pattern),
        ))
    if start_date is not None:
        query = query.filter(Payment.created_at >= _start_of_day(start_date))
    if end_date is not None:
        query = query.filter(Payment.created_at < _start_of_day(end_date + timedelta(days=1)))
    return query.order_by(Payment.created_at.desc(), Payment.id.desc()).offset(skip).limit(limit).all()
