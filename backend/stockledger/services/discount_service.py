# Overview: Pure discount and totals arithmetic for invoice lines and invoices.

"""
Discount Engine

WHY: Line totals, invoice totals and the discount ceiling must agree to the
cent everywhere they are computed (add, update, recalc, reports). Keeping
the arithmetic in pure functions lets every caller share it.

DESIGN PRINCIPLES:
- Money is integer cents, percentages are integer basis points (1000 = 10%)
- Rounding is half-up to a whole cent and happens at every step
- Line discount applies to quantity x unit price
- Invoice discount applies to the subtotal (sum of line totals) and is
  independent of line discounts
- No database access
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple

from ..models.invoices import DISCOUNT_NONE, DISCOUNT_PERCENTAGE, DISCOUNT_FIXED, DISCOUNT_TYPES
from .errors import InvalidAmountError


MAX_PERCENT_BPS = 10000


class LineTotals(NamedTuple):
    pre_discount_cents: int
    discount_cents: int
    line_total_cents: int
    line_cost_cents: int
    line_profit_cents: int


class InvoiceTotals(NamedTuple):
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    total_cost_cents: int
    total_profit_cents: int
    margin_bps: int | None


def round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up (away from zero on .5)."""
    value = Decimal(numerator) / Decimal(denominator)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_discount(discount_type: str | None, discount_value) -> tuple[str, int]:
    """
    Normalize and validate a (type, value) pair.

    - None type is treated as "none"
    - "none" always resets the value to 0
    - negative values and percentages above 100% are rejected
    """
    discount_type = discount_type or DISCOUNT_NONE
    if discount_type not in DISCOUNT_TYPES:
        raise InvalidAmountError(
            f"Invalid discount type: {discount_type}. Must be one of {DISCOUNT_TYPES}",
            code="INVALID_DISCOUNT_TYPE",
            details={"discount_type": discount_type},
        )

    if discount_type == DISCOUNT_NONE:
        return DISCOUNT_NONE, 0

    if discount_value is None or isinstance(discount_value, bool) or not isinstance(discount_value, int):
        raise InvalidAmountError(
            "Discount value must be an integer",
            code="INVALID_DISCOUNT_VALUE",
            details={"discount_value": discount_value},
        )
    if discount_value < 0:
        raise InvalidAmountError(
            "Discount value cannot be negative",
            code="INVALID_DISCOUNT_VALUE",
            details={"discount_value": discount_value},
        )
    if discount_type == DISCOUNT_PERCENTAGE and discount_value > MAX_PERCENT_BPS:
        raise InvalidAmountError(
            "Percentage discount cannot exceed 100%",
            code="INVALID_DISCOUNT_VALUE",
            details={"discount_value": discount_value, "max_bps": MAX_PERCENT_BPS},
        )
    return discount_type, discount_value


def compute_discount(base_cents: int, discount_type: str | None, discount_value) -> int:
    """Discount in cents for a base amount. Never exceeds the base."""
    discount_type, discount_value = validate_discount(discount_type, discount_value)
    if base_cents <= 0 or discount_type == DISCOUNT_NONE:
        return 0
    if discount_type == DISCOUNT_PERCENTAGE:
        return min(round_half_up(base_cents * discount_value, MAX_PERCENT_BPS), base_cents)
    return min(discount_value, base_cents)


def compute_line_totals(
    quantity: int,
    unit_price_cents: int,
    unit_cost_cents: int,
    discount_type: str | None = DISCOUNT_NONE,
    discount_value=0,
) -> LineTotals:
    """
    Totals for one invoice line.

    Example: 3 x 10000 at 1000 bps -> pre 30000, discount 3000, total 27000.
    """
    pre_discount = quantity * unit_price_cents
    discount = compute_discount(pre_discount, discount_type, discount_value)
    line_total = pre_discount - discount
    line_cost = quantity * (unit_cost_cents or 0)
    return LineTotals(
        pre_discount_cents=pre_discount,
        discount_cents=discount,
        line_total_cents=line_total,
        line_cost_cents=line_cost,
        line_profit_cents=line_total - line_cost,
    )


def compute_invoice_totals(
    line_totals: Iterable[int],
    line_costs: Iterable[int],
    discount_type: str | None = DISCOUNT_NONE,
    discount_value=0,
) -> InvoiceTotals:
    subtotal = sum(line_totals)
    discount = compute_discount(subtotal, discount_type, discount_value)
    total = subtotal - discount
    total_cost = sum(line_costs)
    profit = total - total_cost
    margin_bps = round_half_up(profit * MAX_PERCENT_BPS, total) if total > 0 else None
    return InvoiceTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        total_cents=total,
        total_cost_cents=total_cost,
        total_profit_cents=profit,
        margin_bps=margin_bps,
    )


def effective_discount_bps(base_cents: int, discount_type: str | None, discount_value) -> int:
    """Discount expressed as basis points of the base (rounded half-up)."""
    discount_type, discount_value = validate_discount(discount_type, discount_value)
    if discount_type == DISCOUNT_NONE:
        return 0
    if discount_type == DISCOUNT_PERCENTAGE:
        return discount_value
    if base_cents <= 0:
        return 0
    return round_half_up(discount_value * MAX_PERCENT_BPS, base_cents)


def _exceeds_ceiling(base_cents: int, discount_type: str, discount_value: int, ceiling_bps: int) -> bool:
    if discount_type == DISCOUNT_PERCENTAGE:
        return discount_value > ceiling_bps
    if discount_type == DISCOUNT_FIXED and base_cents > 0:
        # exact comparison, no rounding: value / base > ceiling / 10000
        return discount_value * MAX_PERCENT_BPS > ceiling_bps * base_cents
    return False


def enforce_discount_ceiling(base_cents: int, discount_type: str | None, discount_value, ceiling_bps: int | None) -> None:
    """
    Reject a discount whose effective percentage exceeds the actor's ceiling.

    ceiling_bps None means no ceiling (Admin, or system callers).
    """
    discount_type, discount_value = validate_discount(discount_type, discount_value)
    if ceiling_bps is None:
        return
    if _exceeds_ceiling(base_cents, discount_type, discount_value, ceiling_bps):
        raise InvalidAmountError(
            f"Maximum discount for your role is {ceiling_bps / 100:g}%. Contact a manager for higher discounts.",
            code="DISCOUNT_LIMIT_EXCEEDED",
            details={
                "max_discount_bps": ceiling_bps,
                "effective_discount_bps": effective_discount_bps(base_cents, discount_type, discount_value),
            },
        )


def ceiling_for(actor) -> int | None:
    """Discount ceiling of the acting user (None = unlimited / no actor)."""
    if actor is None:
        return None
    return actor.discount_ceiling_bps
