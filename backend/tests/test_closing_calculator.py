"""
Closing balance formula tests.

Verifies:
- Worked examples (cold start, deposits/returns, negative clamp)
- closing_full is computed (and clamped) before closing_empty
- Closings are never negative, and clamps are reported as warnings
"""

import itertools

import pytest

from dsr.services.closing_calculator import clamp_warnings, compute_closing
from dsr.services.data_quality import WARN_NEGATIVE_BALANCE_CLAMPED
from dsr.services.stock_events import empty_deltas


def deltas(**values):
    d = empty_deltas()
    d.update(values)
    return d


class TestWorkedExamples:

    def test_cold_start_refill_and_sales(self):
        balance = compute_closing(50, 10, deltas(refilled=5, full_cylinder_sales=3, gas_sales=2))
        assert balance.closing_full == 50
        # 50 + 10 - 3 - 50
        assert balance.closing_empty == 7
        assert not balance.clamped

    def test_carry_forward_with_deposits_and_returns(self):
        balance = compute_closing(50, 20, deltas(full_cylinder_sales=10, deposits=4, returns=1))
        assert (balance.closing_full, balance.closing_empty) == (40, 17)

    def test_negative_full_is_clamped(self):
        balance = compute_closing(2, 0, deltas(full_cylinder_sales=5))
        assert balance.closing_full == 0
        assert balance.raw_full == -3
        assert balance.clamped

        warnings = clamp_warnings("large cylinder", balance)
        assert warnings
        assert all(w.code == WARN_NEGATIVE_BALANCE_CLAMPED for w in warnings)
        assert "-3" in warnings[0].message
        assert warnings[0].product_key == "large cylinder"


class TestFormula:

    def test_gas_sale_turns_full_into_empty(self):
        balance = compute_closing(10, 0, deltas(gas_sales=4))
        assert (balance.closing_full, balance.closing_empty) == (6, 4)

    def test_empty_uses_clamped_full(self):
        # raw full is -5; empty must subtract the stored 0, not -5
        balance = compute_closing(0, 8, deltas(gas_sales=5))
        assert balance.closing_full == 0
        assert balance.closing_empty == 8

    def test_purchases_and_receipts(self):
        balance = compute_closing(
            5, 5,
            deltas(full_purchase=3, empty_purchase=2, received_gas=1, received_empty=4),
        )
        assert balance.closing_full == 9
        assert balance.closing_empty == 5 + 5 + 3 + 2 + 4 - 9

    def test_full_transfer_moves_gas_and_shell(self):
        balance = compute_closing(10, 0, deltas(transfer_gas=3, transfer_empty=3))
        assert (balance.closing_full, balance.closing_empty) == (7, 0)

    def test_no_activity_keeps_opening(self):
        balance = compute_closing(12, 4, empty_deltas())
        assert (balance.closing_full, balance.closing_empty) == (12, 4)
        assert clamp_warnings("x", balance) == []


class TestNonNegativity:

    @pytest.mark.parametrize(
        "opening_full,opening_empty,outflow",
        list(itertools.product([0, 1, 7], [0, 3], [0, 2, 50])),
    )
    def test_closings_never_negative(self, opening_full, opening_empty, outflow):
        balance = compute_closing(
            opening_full, opening_empty,
            deltas(
                full_cylinder_sales=outflow,
                empty_cylinder_sales=outflow,
                gas_sales=outflow,
                deposits=outflow,
                transfer_gas=outflow,
                transfer_empty=outflow,
            ),
        )
        assert balance.closing_full >= 0
        assert balance.closing_empty >= 0
        assert balance.clamped == (balance.raw_full < 0 or balance.raw_empty < 0)
