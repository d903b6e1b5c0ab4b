"""Bill splitting."""

from decimal import ROUND_DOWN, Decimal
from typing import Union

from pocket.models import BillSplit, to_cents

DEFAULT_SERVICE_CHARGE_RATE = Decimal("0.10")


class BillSplitError(ValueError):
    """Raised when a bill cannot be split."""
    pass


def split_bill(
    total: Union[Decimal, int, float, str],
    people: int,
    include_service_charge: bool = False,
    rate: Decimal = DEFAULT_SERVICE_CHARGE_RATE,
) -> BillSplit:
    """
    Divide a bill between people, optionally adding the service charge.

    `per_person` is the rounded share. `shares` hands the leftover cents
    to the first people so that the shares add up exactly to the final
    total (R$ 100,00 / 3 -> 33,34 + 33,33 + 33,33).

    Raises:
        BillSplitError: If the total is not positive or there are no people
    """
    try:
        total = to_cents(total)
    except ArithmeticError as e:
        raise BillSplitError(f"Invalid total: {total}") from e

    if not total.is_finite():
        raise BillSplitError(f"Invalid total: {total}")
    if total <= 0:
        raise BillSplitError("Total must be greater than zero")
    if people < 1:
        raise BillSplitError("At least one person is required")

    service_charge = to_cents(total * rate) if include_service_charge else Decimal("0.00")
    final_total = total + service_charge
    per_person = to_cents(final_total / people)

    base_share = (final_total / people).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    leftover_cents = int((final_total - base_share * people) * 100)
    shares = [
        base_share + (Decimal("0.01") if i < leftover_cents else Decimal("0"))
        for i in range(people)
    ]

    return BillSplit(
        total=total,
        people=people,
        service_charge=service_charge,
        final_total=final_total,
        per_person=per_person,
        shares=shares,
    )
