# Overview: Pytest coverage for discount arithmetic and role ceilings.

"""
Discount Engine Tests

Pure arithmetic: no database fixtures needed except where a User row is
used as the acting user.
"""

import pytest

from stockledger.models import User
from stockledger.models.users import ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES
from stockledger.services.discount_service import (
    round_half_up,
    validate_discount,
    compute_discount,
    compute_line_totals,
    compute_invoice_totals,
    effective_discount_bps,
    enforce_discount_ceiling,
    ceiling_for,
)
from stockledger.services.errors import InvalidAmountError


class TestRounding:

    def test_half_rounds_up(self):
        assert round_half_up(5, 10) == 1
        assert round_half_up(15, 10) == 2

    def test_below_half_rounds_down(self):
        assert round_half_up(14, 10) == 1

    def test_percentage_discount_rounds_half_up(self):
        # 12.5% of 1234 = 154.25 -> 154
        assert compute_discount(1234, "percentage", 1250) == 154
        # 10% of 1235 = 123.5 -> 124
        assert compute_discount(1235, "percentage", 1000) == 124


class TestValidateDiscount:

    def test_none_type_resets_value(self):
        assert validate_discount(None, 500) == ("none", 0)
        assert validate_discount("none", 999) == ("none", 0)

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidAmountError) as exc:
            validate_discount("bogus", 100)
        assert exc.value.code == "INVALID_DISCOUNT_TYPE"

    def test_negative_value_rejected(self):
        with pytest.raises(InvalidAmountError) as exc:
            validate_discount("fixed", -1)
        assert exc.value.code == "INVALID_DISCOUNT_VALUE"

    def test_percentage_over_100_rejected(self):
        with pytest.raises(InvalidAmountError):
            validate_discount("percentage", 10001)

    def test_float_value_rejected(self):
        with pytest.raises(InvalidAmountError):
            validate_discount("fixed", 10.5)


class TestLineTotals:

    def test_percentage_line(self):
        totals = compute_line_totals(3, 10000, 6000, "percentage", 1000)
        assert totals.pre_discount_cents == 30000
        assert totals.discount_cents == 3000
        assert totals.line_total_cents == 27000
        assert totals.line_cost_cents == 18000
        assert totals.line_profit_cents == 9000

    def test_fixed_discount_capped_at_line_value(self):
        totals = compute_line_totals(1, 500, 0, "fixed", 900)
        assert totals.discount_cents == 500
        assert totals.line_total_cents == 0

    def test_no_discount(self):
        totals = compute_line_totals(2, 1999, 1000)
        assert totals.line_total_cents == 3998
        assert totals.discount_cents == 0


class TestInvoiceTotals:

    def test_invoice_discount_applies_to_subtotal(self):
        totals = compute_invoice_totals([27000, 3000], [18000, 1000], "fixed", 5000)
        assert totals.subtotal_cents == 30000
        assert totals.discount_cents == 5000
        assert totals.total_cents == 25000
        assert totals.total_cost_cents == 19000
        assert totals.total_profit_cents == 6000
        assert totals.margin_bps == 2400

    def test_margin_undefined_for_zero_total(self):
        totals = compute_invoice_totals([], [])
        assert totals.total_cents == 0
        assert totals.margin_bps is None


class TestCeiling:

    def test_fixed_discount_within_ceiling_exactly(self):
        # 1000 of 10000 is exactly 10%
        enforce_discount_ceiling(10000, "fixed", 1000, 1000)

    def test_fixed_discount_one_cent_over_ceiling(self):
        with pytest.raises(InvalidAmountError) as exc:
            enforce_discount_ceiling(10000, "fixed", 1001, 1000)
        assert exc.value.code == "DISCOUNT_LIMIT_EXCEEDED"
        assert exc.value.details["max_discount_bps"] == 1000

    def test_percentage_over_ceiling(self):
        with pytest.raises(InvalidAmountError):
            enforce_discount_ceiling(10000, "percentage", 1500, 1000)

    def test_no_ceiling_allows_anything(self):
        enforce_discount_ceiling(10000, "percentage", 10000, None)

    def test_effective_bps_for_fixed(self):
        assert effective_discount_bps(30000, "fixed", 5000) == 1667

    def test_role_ceilings(self):
        assert ceiling_for(None) is None
        assert ceiling_for(User(username="a", role=ROLE_ADMIN)) is None
        assert ceiling_for(User(username="m", role=ROLE_MANAGER)) == 2500
        assert ceiling_for(User(username="s", role=ROLE_SALES)) == 1000

    def test_user_override_beats_role(self):
        user = User(username="s2", role=ROLE_SALES, max_discount_bps=500)
        assert ceiling_for(user) == 500
