from .formatting import format_rupiah
from .installments import resolve_total_installments

__all__ = ['format_rupiah', 'resolve_total_installments']
