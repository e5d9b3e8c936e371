from models.programs import Program
from models.registrations import Registration
from models.payments import Payment
from models.payment_installments import PaymentInstallment
from models.payment_history import PaymentHistory
from models.payment_status import PaymentStatus, StatusKind

__all__ = ['Payment', 'PaymentHistory', 'PaymentInstallment', 'PaymentStatus', 'Program', 'Registration', 'StatusKind',]
