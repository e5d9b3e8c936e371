from sqlalchemy import Column, Integer, Numeric, String
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin

class Program(Base, TimestampMixin):
    __tablename__ = "programs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    training_cost = Column(Numeric(15, 2), nullable=False, default=0)
    installment_plan = Column(String(50), nullable=True) # e.g. "none", "4_installments", "6_installments"

    # Relationships
    registrations = relationship("Registration", back_populates="program")
