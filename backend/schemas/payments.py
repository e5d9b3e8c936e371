from pydantic import BaseModel, BeforeValidator, Field
from typing import Optional, List, Dict, Annotated
from datetime import date, datetime
from decimal import Decimal

from models.payment_status import PaymentStatus


def _status_code(value):
    if isinstance(value, PaymentStatus):
        return value.code
    return PaymentStatus.from_code(value).code

# Accepts "pending", "installment_2", ... (or a PaymentStatus) and rejects anything else
StatusCode = Annotated[str, BeforeValidator(_status_code)]

# Rupiah amounts as stored in Numeric(15, 2) columns; more precise input is rejected, never rounded
Money = Annotated[Decimal, Field(max_digits=15, decimal_places=2)]


class PaymentOpen(BaseModel):
    registration_id: int
    notes: Optional[str] = None

class ManualInvoiceCreate(BaseModel):
    installment_number: int
    amount: Money
    due_date: date
    notes: Optional[str] = None

class DueDateUpdate(BaseModel):
    due_date: date
    notes: Optional[str] = None

class PaymentStatusUpdate(BaseModel):
    status: StatusCode
    amount_paid: Money = Decimal("0")
    notes: Optional[str] = None
    is_manual: bool = False
    payment_method: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    payment_date: Optional[date] = None

class ManualPaymentCreate(BaseModel):
    registration_id: int
    amount_paid: Money
    payment_method: str = "transfer"
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    payment_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    status: StatusCode = "pending"

class ProofAttach(BaseModel):
    proof_image: str

class ProofUploadRequest(BaseModel):
    filename: str


class PaymentInstallment(BaseModel):
    installment_number: int
    amount: Decimal
    due_date: date
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    class Config:
        from_attributes = True

class PaymentHistory(BaseModel):
    id: int
    payment_id: int
    old_status: Optional[StatusCode] = None
    new_status: StatusCode
    old_amount_paid: Optional[Decimal] = None
    new_amount_paid: Optional[Decimal] = None
    amount_changed: Decimal
    notes: Optional[str] = None
    changed_by: Optional[str] = None
    changed_at: datetime

    class Config:
        from_attributes = True

class Payment(BaseModel):
    id: int
    registration_id: int
    invoice_number: str
    receipt_number: Optional[str] = None
    status: StatusCode
    amount: Decimal
    amount_paid: Decimal
    current_installment_number: int
    due_date: Optional[date] = None
    next_due_date: Optional[date] = None
    payment_date: Optional[date] = None
    is_manual_invoice: bool
    payment_method: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    proof_image: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    notes: Optional[str] = None
    installment_amounts: Dict[str, PaymentInstallment] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    class Config:
        from_attributes = True

class PaymentDetail(BaseModel):
    payment: Payment
    history: List[PaymentHistory]
    total_installments: int
    remaining_installments: int
    program_training_cost: Optional[Decimal] = None


class InvoiceResult(BaseModel):
    payment_id: int
    status: StatusCode
    installment_number: int
    amount: Decimal
    due_date: date
    current_installment_number: int

class PaymentResult(BaseModel):
    payment_id: int
    invoice_number: str
    receipt_number: Optional[str] = None
    status: StatusCode
    amount_paid: Decimal
    current_installment_number: int
    due_date: Optional[date] = None
    is_manual: bool = False
