"""
Payment status value type.

A payment is in exactly one of ``Pending | Installment(n) | Paid | Overdue |
Cancelled``. The installment number travels with the status instead of being
parsed out of an ``installment_N`` string at every call site; the string form
only exists at the storage and API boundaries.
"""

import enum
from dataclasses import dataclass

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

MAX_INSTALLMENTS = 6


class StatusKind(enum.Enum):
    PENDING = "pending"
    INSTALLMENT = "installment"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


STATUS_LABELS = {
    StatusKind.PENDING: "Menunggu Pembayaran",
    StatusKind.PAID: "Lunas",
    StatusKind.OVERDUE: "Terlambat",
    StatusKind.CANCELLED: "Dibatalkan",
}


@dataclass(frozen=True)
class PaymentStatus:
    kind: StatusKind
    installment: int = 0

    def __post_init__(self):
        if self.kind is StatusKind.INSTALLMENT:
            if not 1 <= self.installment <= MAX_INSTALLMENTS:
                raise ValueError(
                    f"Installment number must be between 1 and {MAX_INSTALLMENTS}, got {self.installment}"
                )
        elif self.installment != 0:
            raise ValueError(f"Status '{self.kind.value}' does not carry an installment number")

    @classmethod
    def of_installment(cls, number: int) -> "PaymentStatus":
        return cls(StatusKind.INSTALLMENT, number)

    @classmethod
    def from_code(cls, code: str) -> "PaymentStatus":
        """Parse the storage/API code (``pending``, ``installment_3``, ...)."""
        if not isinstance(code, str):
            raise ValueError(f"Status code must be a string, got {type(code).__name__}")
        code = code.strip().lower()
        if code.startswith("installment_"):
            suffix = code[len("installment_"):]
            if not suffix.isdigit():
                raise ValueError(f"Unknown payment status: {code}")
            return cls.of_installment(int(suffix))
        try:
            kind = StatusKind(code)
        except ValueError:
            raise ValueError(f"Unknown payment status: {code}")
        if kind is StatusKind.INSTALLMENT:
            raise ValueError("Installment status needs a number, e.g. installment_1")
        return cls(kind)

    @property
    def code(self) -> str:
        if self.kind is StatusKind.INSTALLMENT:
            return f"installment_{self.installment}"
        return self.kind.value

    @property
    def label(self) -> str:
        if self.kind is StatusKind.INSTALLMENT:
            return f"Cicilan {self.installment}"
        return STATUS_LABELS[self.kind]

    @property
    def is_installment(self) -> bool:
        return self.kind is StatusKind.INSTALLMENT

    @property
    def is_closed(self) -> bool:
        return self.kind in (StatusKind.PAID, StatusKind.CANCELLED)

    @property
    def installment_counter(self) -> int:
        """Value of ``current_installment_number`` that matches this status."""
        return self.installment if self.is_installment else 0

    def __str__(self):
        return self.code


PaymentStatus.PENDING = PaymentStatus(StatusKind.PENDING)
PaymentStatus.PAID = PaymentStatus(StatusKind.PAID)
PaymentStatus.OVERDUE = PaymentStatus(StatusKind.OVERDUE)
PaymentStatus.CANCELLED = PaymentStatus(StatusKind.CANCELLED)


class PaymentStatusType(TypeDecorator):
    """Stores a PaymentStatus as its code string."""

    impl = String(20)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = PaymentStatus.from_code(value)
        return value.code

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PaymentStatus.from_code(value)
