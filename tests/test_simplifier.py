"""Tests for debt simplification."""

from collections import defaultdict
from decimal import Decimal

import pytest

from splitsettle.models import Debt, UserBalance
from splitsettle.simplifier import balance_between, simplify_debts


def balance(member_id: int, net: str) -> UserBalance:
    """Create a balance with only the net amount filled in."""
    return UserBalance(member_id=member_id, net_balance=Decimal(net))


class TestSimplifyDebts:
    """Tests for greedy creditor/debtor matching."""

    def test_two_members(self):
        debts = simplify_debts([balance(1, "50"), balance(2, "-50")])

        assert debts == [Debt(from_member=2, to_member=1, amount=Decimal("50.00"))]

    def test_one_creditor_two_debtors(self):
        debts = simplify_debts([balance(1, "60"), balance(2, "-30"), balance(3, "-30")])

        assert debts == [
            Debt(from_member=2, to_member=1, amount=Decimal("30.00")),
            Debt(from_member=3, to_member=1, amount=Decimal("30.00")),
        ]

    def test_largest_debtor_matched_with_largest_creditor_first(self):
        debts = simplify_debts(
            [
                balance(1, "10"),
                balance(2, "70"),
                balance(3, "-20"),
                balance(4, "-60"),
            ]
        )

        assert debts == [
            Debt(from_member=4, to_member=2, amount=Decimal("60.00")),
            Debt(from_member=3, to_member=2, amount=Decimal("10.00")),
            Debt(from_member=3, to_member=1, amount=Decimal("10.00")),
        ]

    def test_balances_within_tolerance_are_settled(self):
        """Members within one cent of zero are left out."""
        debts = simplify_debts(
            [balance(1, "0.01"), balance(2, "-0.01"), balance(3, "0.00")]
        )

        assert debts == []

    def test_empty_input(self):
        assert simplify_debts([]) == []

    def test_unbalanced_residual_left_unmatched(self):
        """Extra credit with no matching debt is not redistributed."""
        debts = simplify_debts([balance(1, "50"), balance(2, "-30")])

        assert debts == [Debt(from_member=2, to_member=1, amount=Decimal("30.00"))]

    def test_is_deterministic(self):
        balances = [
            balance(1, "25.50"),
            balance(2, "-10.25"),
            balance(3, "40.00"),
            balance(4, "-55.25"),
        ]

        assert simplify_debts(balances) == simplify_debts(balances)

    def test_ties_keep_input_order(self):
        """Equal debts are paid in input order."""
        debts = simplify_debts([balance(5, "-10"), balance(3, "-10"), balance(1, "20")])

        assert [d.from_member for d in debts] == [5, 3]

    def test_never_exceeds_member_count_minus_one(self):
        balances = [
            balance(1, "33.33"),
            balance(2, "33.33"),
            balance(3, "33.34"),
            balance(4, "-25"),
            balance(5, "-25"),
            balance(6, "-25"),
            balance(7, "-25"),
        ]

        debts = simplify_debts(balances)

        assert len(debts) <= len(balances) - 1

    @pytest.mark.parametrize(
        "nets",
        [
            ["100", "-40", "-60"],
            ["12.34", "56.78", "-30.00", "-39.12"],
            ["-0.50", "0.25", "0.25"],
            ["250", "-83.33", "-83.33", "-83.34"],
        ],
    )
    def test_conservation(self, nets):
        """Each member pays or receives exactly their net balance."""
        balances = [balance(i, net) for i, net in enumerate(nets)]

        debts = simplify_debts(balances)

        flow: dict[int, Decimal] = defaultdict(Decimal)
        for debt in debts:
            assert debt.amount > Decimal("0.01")
            flow[debt.from_member] -= debt.amount
            flow[debt.to_member] += debt.amount

        for b in balances:
            assert abs(flow[b.member_id] - b.net_balance) <= Decimal("0.01")

    def test_no_member_pays_and_receives_from_same_counterpart(self):
        debts = simplify_debts(
            [balance(1, "30"), balance(2, "-10"), balance(3, "-20"), balance(4, "0")]
        )

        pairs = {(d.from_member, d.to_member) for d in debts}
        assert all((to, frm) not in pairs for frm, to in pairs)


class TestBalanceBetween:
    """Tests for signed balance lookup between two members."""

    @pytest.fixture
    def debts(self):
        return [
            Debt(from_member=2, to_member=1, amount=Decimal("30.00")),
            Debt(from_member=3, to_member=1, amount=Decimal("12.50")),
        ]

    def test_positive_when_first_member_is_owed(self, debts):
        assert balance_between(debts, 1, 2) == Decimal("30.00")

    def test_negative_when_first_member_owes(self, debts):
        assert balance_between(debts, 3, 1) == Decimal("-12.50")

    def test_zero_without_direct_edge(self, debts):
        assert balance_between(debts, 2, 3) == Decimal(0)
