from sqlalchemy import Column, Integer, Numeric, DateTime, String, ForeignKey, Text
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import now_local
from models.payment_status import PaymentStatusType

class PaymentHistory(Base):
    """Append-only ledger row: one per status or amount change of a payment."""
    __tablename__ = "payment_history"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)
    old_status = Column(PaymentStatusType(), nullable=True) # NULL for the row that created the payment
    new_status = Column(PaymentStatusType(), nullable=False, index=True)
    old_amount_paid = Column(Numeric(15, 2), nullable=True)
    new_amount_paid = Column(Numeric(15, 2), nullable=True)
    amount_changed = Column(Numeric(15, 2), nullable=False, default=0, server_default='0')
    notes = Column(Text, nullable=True)
    changed_by = Column(String, nullable=True)
    changed_at = Column(DateTime(timezone=True), default=now_local, nullable=False)

    # Relationships
    payment = relationship("Payment", back_populates="history")
