from sqlalchemy import Column, Integer, Numeric, Date, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin

class PaymentInstallment(Base, TimestampMixin):
    """Invoice issued by an admin for one installment (cicilan) of a payment."""
    __tablename__ = "payment_installments"
    __table_args__ = (UniqueConstraint('payment_id', 'installment_number', name='_payment_installment_number_uc'),)

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)

    # Relationships
    payment = relationship("Payment", back_populates="installments")
