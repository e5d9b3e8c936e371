import uuid
from models.audit_mixin import now_local


def _generate(prefix: str) -> str:
    return f"{prefix}-{now_local().strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


def generate_invoice_number() -> str:
    """Unique invoice number, e.g. INV-20261019-3FA2C91B."""
    return _generate("INV")


def generate_receipt_number() -> str:
    """Unique receipt (kwitansi) number, e.g. KWT-20261019-7D0E11A4."""
    return _generate("KWT")
