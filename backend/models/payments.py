from sqlalchemy import Column, Integer, Numeric, Date, DateTime, String, ForeignKey, Text, Boolean
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin
from models.payment_status import PaymentStatus, PaymentStatusType

class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=False, index=True)
    invoice_number = Column(String(50), unique=True, nullable=False)
    receipt_number = Column(String(50), unique=True, nullable=True) # Assigned once, never reassigned
    status = Column(PaymentStatusType(), nullable=False, default=PaymentStatus.PENDING, index=True)
    amount = Column(Numeric(15, 2), nullable=False, default=0) # Total tuition, synced from the program
    amount_paid = Column(Numeric(15, 2), nullable=False, default=0, server_default='0') # Cumulative paid-to-date
    current_installment_number = Column(Integer, nullable=False, default=0, server_default='0')
    due_date = Column(Date, nullable=True)
    next_due_date = Column(Date, nullable=True)
    payment_date = Column(Date, nullable=True)
    is_manual_invoice = Column(Boolean, nullable=False, default=False, server_default='0')
    payment_method = Column(String(50), nullable=True) # e.g. "transfer", "cash"
    bank_name = Column(String(100), nullable=True)
    account_number = Column(String(100), nullable=True)
    proof_image = Column(String(500), nullable=True)
    verified_by = Column(String, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    registration = relationship("Registration", back_populates="payments")
    installments = relationship(
        "PaymentInstallment",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentInstallment.installment_number",
    )
    history = relationship(
        "PaymentHistory",
        back_populates="payment",
        order_by="PaymentHistory.id",
    )

    @property
    def installment_amounts(self):
        """Per-installment invoices keyed ``installment_N``, in installment order."""
        return {f"installment_{item.installment_number}": item for item in self.installments}
