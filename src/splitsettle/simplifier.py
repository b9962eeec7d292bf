"""Debt simplification: turn net balances into a short list of transfers."""

from collections.abc import Sequence
from decimal import Decimal

from .allocator import TOLERANCE, round_money
from .models import Debt, UserBalance


def simplify_debts(balances: Sequence[UserBalance]) -> list[Debt]:
    """
    Compute a settlement plan with greedy creditor/debtor matching.

    Algorithm:
    1. Separate into creditors (net > 0.01) and debtors (net < -0.01)
    2. Sort both by amount, largest first (ties keep input order)
    3. Match the current debtor with the current creditor for the
       smaller of the two remaining amounts
    4. Move past whichever side dropped below 0.01; repeat

    Residual drift between total credit and total debt is not
    redistributed; it stays unmatched on the longer side.

    Args:
        balances: Net balances per member

    Returns:
        Debt edges (from debtor, to creditor), amounts rounded to cents
    """
    creditors = [
        [b.member_id, b.net_balance] for b in balances if b.net_balance > TOLERANCE
    ]
    debtors = [
        [b.member_id, -b.net_balance] for b in balances if b.net_balance < -TOLERANCE
    ]

    # sort() is stable, reverse=True included
    creditors.sort(key=lambda x: x[1], reverse=True)
    debtors.sort(key=lambda x: x[1], reverse=True)

    debts = []
    i, j = 0, 0

    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]

        amount = min(debtor[1], creditor[1])

        if amount > TOLERANCE:  # Only record if more than a cent
            debts.append(
                Debt(
                    from_member=debtor[0],
                    to_member=creditor[0],
                    amount=round_money(amount),
                )
            )

        debtor[1] -= amount
        creditor[1] -= amount

        if debtor[1] < TOLERANCE:
            i += 1
        if creditor[1] < TOLERANCE:
            j += 1

    return debts


def balance_between(debts: Sequence[Debt], member_a: int, member_b: int) -> Decimal:
    """
    Signed amount between two members from a settlement plan.

    Positive means ``member_a`` is owed money by ``member_b``; negative
    means ``member_a`` owes ``member_b``; zero if no edge joins them.
    """
    for debt in debts:
        if debt.from_member == member_a and debt.to_member == member_b:
            return -debt.amount
        if debt.from_member == member_b and debt.to_member == member_a:
            return debt.amount
    return Decimal(0)
