"""
Domain errors raised by the payment ledger.

Every error raised before ``commit()`` means nothing was written: the
caller may correct the input and resubmit. ``ConsistencyError`` is the only
one that signals a server-side problem.
"""


class PaymentError(Exception):
    status_code = 500

    def __init__(self, message: str, expected=None):
        super().__init__(message)
        self.message = message
        self.expected = expected

    def to_detail(self) -> dict:
        detail = {"message": self.message, "changed": False}
        if self.expected is not None:
            detail["expected"] = self.expected
        return detail


class PaymentValidationError(PaymentError, ValueError):
    """Rejected input: illegal transition, skipped installment, overpayment, bad amount or date."""
    status_code = 400


class NotFoundError(PaymentError, LookupError):
    status_code = 404


class ConflictError(PaymentError):
    status_code = 409


class ConsistencyError(PaymentError):
    """Commit failure or a numeric mismatch that correct use cannot produce."""
    status_code = 500
