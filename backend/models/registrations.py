from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from database import Base
from models.audit_mixin import TimestampMixin

class Registration(Base, TimestampMixin):
    """Read-only view of a candidate registration, owned by the registration service."""
    __tablename__ = "registrations"

    id = Column(Integer, primary_key=True, index=True)
    registration_code = Column(String(50), unique=True, nullable=False)
    program_id = Column(Integer, ForeignKey("programs.id"), nullable=False)
    full_name = Column(String(200), nullable=True)

    # Relationships
    program = relationship("Program", back_populates="registrations")
    payments = relationship("Payment", back_populates="registration")
