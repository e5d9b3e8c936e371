from dataclasses import dataclass
from typing import Optional

from crud.payment_history import HistoryLedger
from models.payment_status import PaymentStatus, StatusKind


@dataclass(frozen=True)
class TransitionResult:
    valid: bool
    next_installment: Optional[int] = None
    error: Optional[str] = None
    expected: Optional[str] = None

    @classmethod
    def ok(cls, next_installment: Optional[int] = None) -> "TransitionResult":
        return cls(valid=True, next_installment=next_installment)

    @classmethod
    def rejected(cls, error: str, expected: Optional[str] = None) -> "TransitionResult":
        return cls(valid=False, error=error, expected=expected)


class StatusTransitionValidator:
    """
    Decides whether a payment may move from one status to another.

    Progression past an installment is checked against the history ledger,
    not against the payment row, so a payment cannot leave installment k
    unless a payment into installment k was actually recorded.
    """

    def __init__(self, ledger: HistoryLedger):
        self.ledger = ledger

    def validate(
        self,
        payment_id: int,
        current: PaymentStatus,
        requested: PaymentStatus,
        total_installments: int,
    ) -> TransitionResult:
        if current == requested:
            return TransitionResult.ok()

        if current.kind is StatusKind.PENDING and requested == PaymentStatus.of_installment(1):
            return TransitionResult.ok(next_installment=1)

        if current.is_installment and requested.is_installment:
            return self._validate_next_installment(payment_id, current, requested)

        if current.is_installment and requested.kind is StatusKind.PAID:
            return self._validate_settlement(payment_id, current, total_installments)

        if requested.kind is StatusKind.CANCELLED:
            return TransitionResult.ok()

        return TransitionResult.rejected(
            f"Transisi status tidak valid: dari {current.code} ke {requested.code}"
        )

    def _validate_next_installment(self, payment_id, current, requested):
        expected = current.installment + 1
        if requested.installment != expected:
            return TransitionResult.rejected(
                f"Tidak bisa melompat cicilan. Dari {current.code} harus ke installment_{expected}",
                expected=f"installment_{expected}",
            )

        if not self.ledger.has_paid_installment(payment_id, current.installment):
            return TransitionResult.rejected(
                f"Tidak bisa lanjut ke cicilan {requested.installment}. "
                f"Cicilan {current.installment} belum dibayar.",
                expected=current.code,
            )

        return TransitionResult.ok(next_installment=requested.installment)

    def _validate_settlement(self, payment_id, current, total_installments):
        if current.installment < total_installments:
            remaining = total_installments - current.installment
            return TransitionResult.rejected(
                f"Belum bisa lunas. Masih ada {remaining} cicilan lagi",
                expected=f"installment_{current.installment + 1}",
            )
        if current.installment > total_installments:
            return TransitionResult.rejected(
                f"Transisi status tidak valid: program ini hanya memiliki {total_installments} cicilan"
            )

        if not self.ledger.has_paid_installment(payment_id, current.installment):
            return TransitionResult.rejected(
                f"Tidak bisa melunasi. Cicilan {current.installment} belum dibayar.",
                expected=current.code,
            )

        return TransitionResult.ok(next_installment=0)
