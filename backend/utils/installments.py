import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_INSTALLMENTS = 4


def resolve_total_installments(plan: Optional[str]) -> int:
    """
    Number of installments a program's plan allows.

    "none" means a single full payment, "N_installments" means N. Anything
    missing or unreadable falls back to 4 so callers always get a usable count.
    """
    if plan is None:
        return DEFAULT_TOTAL_INSTALLMENTS

    plan = str(plan).strip().lower()
    if not plan:
        return DEFAULT_TOTAL_INSTALLMENTS
    if plan == "none":
        return 1

    head = plan.split("_")[0]
    try:
        count = int(head)
    except ValueError:
        logger.warning(f"Unrecognised installment plan '{plan}', using default of {DEFAULT_TOTAL_INSTALLMENTS}")
        return DEFAULT_TOTAL_INSTALLMENTS

    if count < 1:
        logger.warning(f"Installment plan '{plan}' has no positive count, using default of {DEFAULT_TOTAL_INSTALLMENTS}")
        return DEFAULT_TOTAL_INSTALLMENTS
    return count
