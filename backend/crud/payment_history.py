from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session
from models.payment_history import PaymentHistory
from models.payment_status import PaymentStatus


class HistoryLedger:
    """
    Append-only audit trail of payment changes.

    Besides being the audit log, the ledger is what the transition validator
    asks before letting a payment move past an installment: a row with
    ``new_status == installment_k`` and a positive ``amount_changed`` is the
    only accepted evidence that installment k was paid.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        payment_id: int,
        old_status: Optional[PaymentStatus],
        new_status: PaymentStatus,
        old_amount_paid: Optional[Decimal] = None,
        new_amount_paid: Optional[Decimal] = None,
        amount_changed: Decimal = Decimal("0"),
        notes: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> PaymentHistory:
        entry = PaymentHistory(
            payment_id=payment_id,
            old_status=old_status,
            new_status=new_status,
            old_amount_paid=old_amount_paid,
            new_amount_paid=new_amount_paid,
            amount_changed=amount_changed,
            notes=notes,
            changed_by=changed_by,
        )
        # Flushed, not committed: the caller's transaction decides.
        self.db.add(entry)
        self.db.flush()
        return entry

    def has_paid_installment(self, payment_id: int, installment_number: int) -> bool:
        return (
            self.db.query(PaymentHistory.id)
            .filter(
                PaymentHistory.payment_id == payment_id,
                PaymentHistory.new_status == PaymentStatus.of_installment(installment_number),
                PaymentHistory.amount_changed > 0,
            )
            .first()
            is not None
        )

    def entries(self, payment_id: int) -> List[PaymentHistory]:
        return (
            self.db.query(PaymentHistory)
            .filter(PaymentHistory.payment_id == payment_id)
            .order_by(PaymentHistory.changed_at.asc(), PaymentHistory.id.asc())
            .all()
        )

    def count(self, payment_id: int) -> int:
        return self.db.query(PaymentHistory).filter(PaymentHistory.payment_id == payment_id).count()
