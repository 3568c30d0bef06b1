import math
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from vtc_booking.core.enums import OptionType
from vtc_booking.schemas.tariff import AppliedOption, TenantOption


@dataclass
class OptionFees:
    applied: List[AppliedOption] = field(default_factory=list)
    total_fee: float = 0.0


def compute_option_fees(
    total: float,
    selected_ids: Iterable[str],
    options: Sequence[TenantOption],
) -> OptionFees:
    """Price the selected add-ons against the running total.

    Ids that are not in the tenant catalog are ignored: the widget can send
    stale ids after the tenant edits its options.
    """
    selected = {str(i or "").strip() for i in selected_ids or []}
    selected.discard("")
    base = total if math.isfinite(total) else 0.0

    applied = []
    for option in options or []:
        if option.id not in selected:
            continue
        amount = option.amount if math.isfinite(option.amount) else 0.0
        if option.type == OptionType.PERCENT:
            fee = base * (amount / 100)
        else:
            fee = amount
        applied.append(AppliedOption(
            id=option.id,
            label=option.label,
            type=option.type,
            amount=amount,
            fee=fee,
        ))

    return OptionFees(applied=applied, total_fee=sum(o.fee for o in applied))
