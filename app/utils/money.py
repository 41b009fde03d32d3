"""Integer-cent arithmetic helpers."""
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Dict, Mapping, Union

Number = Union[int, float, Decimal]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_cents(value: Number) -> int:
    """Round half-up to a whole number of cents."""
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_rate(amount_cents: int, rate: Number) -> int:
    return round_cents(to_decimal(amount_cents) * to_decimal(rate))


def allocate_cents(total_cents: int, weights: Mapping[str, Number]) -> Dict[str, int]:
    """
    Split ``total_cents`` proportionally to ``weights``.

    Floors every portion, then hands the leftover cents to the largest
    fractional remainders (ties go to the earlier key), so the result
    always sums to ``total_cents``.
    """
    result: Dict[str, int] = {key: 0 for key in weights}
    weight_sum = sum((to_decimal(w) for w in weights.values()), Decimal("0"))
    if not weights or weight_sum <= 0:
        return result

    total = to_decimal(total_cents)
    remainders = []
    for index, (key, weight) in enumerate(weights.items()):
        exact = total * to_decimal(weight) / weight_sum
        floored = int(exact.to_integral_value(rounding=ROUND_FLOOR))
        result[key] = floored
        remainders.append((exact - floored, -index, key))

    leftover = total_cents - sum(result.values())
    remainders.sort(reverse=True)
    for _, _, key in remainders[:leftover]:
        result[key] += 1
    return result
