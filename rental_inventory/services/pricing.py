"""Cost and payment arithmetic for rental returns.

Everything here is pure so it can be checked without a database. Amounts are
floats; anything that is not a finite number is treated as 0 rather than
allowed to turn a bill total into NaN.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

MS_PER_HOUR = 3_600_000
PAID_TOLERANCE = 0.01
SETTLED_ACCESSORY_STATUSES = {"with_item", "returned"}


def coerce_amount(value) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(amount) or math.isinf(amount):
        return 0.0
    return amount


@dataclass(frozen=True)
class RentalDuration:
    elapsed_ms: int
    hours: int
    days: int


def rental_duration(out_time: datetime, now: datetime) -> RentalDuration:
    """Billable duration; a rental always costs at least one hour and one day."""
    elapsed_ms = max(0, int((now - out_time).total_seconds() * 1000))
    hours = max(1, math.ceil(elapsed_ms / MS_PER_HOUR))
    days = max(1, math.ceil(hours / 24))
    return RentalDuration(elapsed_ms=elapsed_ms, hours=hours, days=days)


def line_cost(rent_type: str, rate, duration: RentalDuration) -> float:
    rate_value = coerce_amount(rate)
    if rent_type == "hourly":
        cost = duration.hours * rate_value
    else:
        # daily and monthly lines are both billed per started day
        cost = duration.days * rate_value
    return coerce_amount(cost)


def accessory_charge(status: str | None, damage_cost, replacement_cost) -> float | None:
    """Charge for one returned accessory, or None when nothing is owed."""
    damage = coerce_amount(damage_cost)
    if damage <= 0 and status in SETTLED_ACCESSORY_STATUSES:
        return None
    if damage > 0:
        return damage
    return coerce_amount(replacement_cost)


@dataclass(frozen=True)
class BillTotals:
    subtotal: float
    discount_percent: float
    discount_amount: float
    tax_percent: float
    system_tax_amount: float
    system_calculated_amount: float
    has_override: bool
    tax_amount: float
    total_amount: float


def compute_bill_totals(
    total_rental_cost,
    total_damage_cost,
    discount_percent=0,
    tax_percent=0,
    customized_total_amount=None,
) -> BillTotals:
    """Subtotal, discount, tax and the final total.

    A customized amount replaces the discounted subtotal as the tax base; tax is
    recomputed on top of it. The system-calculated amount is kept either way.
    """
    subtotal = coerce_amount(total_rental_cost) + coerce_amount(total_damage_cost)
    disc_percent = coerce_amount(discount_percent)
    discount_amount = subtotal * disc_percent / 100
    tax_perc = coerce_amount(tax_percent)
    after_discount = subtotal - discount_amount
    tax_amount = after_discount * tax_perc / 100
    system_calculated = after_discount + tax_amount

    has_override = _is_number(customized_total_amount)
    final_tax = tax_amount
    final_total = system_calculated
    if has_override:
        custom_base = float(customized_total_amount)
        final_tax = custom_base * (tax_perc / 100)
        final_total = custom_base + final_tax

    return BillTotals(
        subtotal=subtotal,
        discount_percent=disc_percent,
        discount_amount=discount_amount,
        tax_percent=tax_perc,
        system_tax_amount=tax_amount,
        system_calculated_amount=system_calculated,
        has_override=has_override,
        tax_amount=final_tax,
        total_amount=final_total,
    )


def _is_number(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return False
    return not math.isnan(parsed)


def resolve_payment_status(due_amount: float, paid_now: float) -> str:
    if due_amount <= PAID_TOLERANCE:
        return "paid"
    if paid_now > 0:
        return "partial"
    return "pending"


@dataclass(frozen=True)
class PaymentState:
    paid_amount: float
    due_amount: float
    payment_status: str
    excess_amount: float = 0.0


def settle_payment(total_amount, previously_paid, paid_now) -> PaymentState:
    """Apply a payment so that total == paid + due holds.

    Money received beyond the total (e.g. an advance larger than the final
    bill) is reported as excess instead of inflating the paid amount.
    """
    total = coerce_amount(total_amount)
    paid_now_value = coerce_amount(paid_now)
    received = coerce_amount(previously_paid) + paid_now_value
    due = max(0.0, total - received)
    excess = max(0.0, received - total)
    return PaymentState(
        paid_amount=received - excess,
        due_amount=due,
        payment_status=resolve_payment_status(due, paid_now_value),
        excess_amount=excess,
    )
