from decimal import Decimal, ROUND_HALF_UP

def format_rupiah(amount) -> str:
    """Format an amount the way receipts print it: "Rp 1.000.000" (rounded, dot thousands)."""
    if amount is None:
        return "Rp 0"
    try:
        amount = Decimal(str(amount))
    except ArithmeticError:
        return "Rp 0"
    rounded = int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    sign = "-" if rounded < 0 else ""
    integer_part = str(abs(rounded))

    groups = []
    while len(integer_part) > 3:
        groups.insert(0, integer_part[-3:])
        integer_part = integer_part[:-3]
    groups.insert(0, integer_part)

    return f"Rp {sign}{'.'.join(groups)}"
