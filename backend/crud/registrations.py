from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session
from models.programs import Program
from models.registrations import Registration
from utils.installments import resolve_total_installments


@dataclass(frozen=True)
class ProgramTerms:
    """Snapshot of the program pricing a payment is validated against."""
    registration_id: int
    program_id: int
    program_name: str
    training_cost: Decimal
    installment_plan: Optional[str]

    @property
    def total_installments(self) -> int:
        return resolve_total_installments(self.installment_plan)


def get_program_terms(db: Session, registration_id: int) -> Optional[ProgramTerms]:
    """
    Reads the program's training cost and installment plan for a registration.

    Always hits the database: the program cost is the authoritative total and
    may be edited by admins between two payment operations.
    """
    row = (
        db.query(Registration.id, Program.id, Program.name, Program.training_cost, Program.installment_plan)
        .join(Program, Registration.program_id == Program.id)
        .filter(Registration.id == registration_id)
        .first()
    )
    if row is None:
        return None
    registration_id, program_id, program_name, training_cost, installment_plan = row
    return ProgramTerms(
        registration_id=registration_id,
        program_id=program_id,
        program_name=program_name,
        training_cost=Decimal(training_cost or 0),
        installment_plan=installment_plan,
    )
