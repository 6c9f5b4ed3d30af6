from decimal import ROUND_HALF_UP, Decimal


def round_half_up(value: float, digits: int = 0) -> float | int:
    """Round like ``Math.round``: halves always go up (62.5 -> 63)."""

    quantum = Decimal(1).scaleb(-digits)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if digits == 0 else float(rounded)


def percentage(part: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(part / total * 100)
