"""Split allocation: turn a split method and member selection into amounts."""

import logging
from collections.abc import Mapping, Sequence
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from .exceptions import AllocationMismatchError, EmptySelectionError
from .models import (
    AllocatedSplit,
    PaymentShare,
    SplitConfiguration,
    SplitMethod,
    SplitSelection,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
TOLERANCE = Decimal("0.01")  # Allocations within this of the total are accepted
HUNDRED = Decimal("100")


def round_money(amount: Decimal) -> Decimal:
    """
    Round an amount to cents.
    Uses ROUND_HALF_UP for consistency across every call site.
    """
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def allocate(
    total: Decimal,
    method: SplitMethod,
    selections: Sequence[SplitSelection],
    previous: Mapping[int, Decimal] | None = None,
) -> list[AllocatedSplit]:
    """
    Derive a concrete amount per selected member.

    Derived amounts are floored to the cent and the leftover cents go to
    the leading members in input order, one cent each, so an equal split
    of 100 among three members yields 33.34, 33.33, 33.33.

    For percentages the target is ``total * sum(percentages) / 100``, so
    a set that doesn't sum to 100 produces a total the caller will reject.
    If percentages or shares sum to zero, the ``previous`` amounts are
    returned unchanged instead of dividing by zero.

    Args:
        total: Expense total (> 0)
        method: Split method to apply
        selections: Selected members with their method-specific inputs
        previous: Amounts from the last derivation, keyed by member id

    Returns:
        One AllocatedSplit per selection, in input order
    """
    if not selections:
        return []

    if method == SplitMethod.EQUAL:
        weights = [Decimal(1)] * len(selections)
        amounts = _distribute(total, weights, Decimal(len(selections)))
        return [
            AllocatedSplit(member_id=s.member_id, amount=amount)
            for s, amount in zip(selections, amounts)
        ]

    if method == SplitMethod.PERCENTAGE:
        weights = [s.percentage or Decimal(0) for s in selections]
        weight_total = sum(weights, Decimal(0))
        if weight_total == 0:
            logger.debug("Percentages sum to zero, keeping previous amounts")
            return _unchanged(selections, previous)

        target = round_money(total * weight_total / HUNDRED)
        amounts = _distribute(target, weights, weight_total)
        return [
            AllocatedSplit(
                member_id=s.member_id, amount=amount, percentage=s.percentage
            )
            for s, amount in zip(selections, amounts)
        ]

    if method == SplitMethod.SHARES:
        weights = [Decimal(s.shares or 0) for s in selections]
        weight_total = sum(weights, Decimal(0))
        if weight_total == 0:
            logger.debug("Shares sum to zero, keeping previous amounts")
            return _unchanged(selections, previous)

        amounts = _distribute(total, weights, weight_total)
        return [
            AllocatedSplit(member_id=s.member_id, amount=amount, shares=s.shares)
            for s, amount in zip(selections, amounts)
        ]

    # Exact: amounts are entered directly
    return [
        AllocatedSplit(member_id=s.member_id, amount=s.amount or Decimal(0))
        for s in selections
    ]


def _distribute(
    target: Decimal, weights: list[Decimal], weight_total: Decimal
) -> list[Decimal]:
    """Split ``target`` proportionally to ``weights`` in whole cents."""
    raw = [target * w / weight_total for w in weights]
    amounts = [r.quantize(CENT, rounding=ROUND_DOWN) for r in raw]

    # Members with a zero weight never absorb leftover cents
    eligible = [i for i, w in enumerate(weights) if w > 0]
    residual = target - sum(amounts, Decimal(0))
    step = CENT if residual > 0 else -CENT
    index = 0
    while abs(residual) >= CENT and eligible:
        amounts[eligible[index % len(eligible)]] += step
        residual -= step
        index += 1

    return amounts


def distribute(target: Decimal, weights: Sequence[Decimal]) -> list[Decimal]:
    """
    Spread ``target`` over rows in proportion to ``weights``.

    The result is in whole cents and sums to ``target`` exactly. Used to
    convert an expense's rows so they still add up to its converted total.
    """
    weights = list(weights)
    weight_total = sum(weights, Decimal(0))
    if weight_total == 0:
        return [Decimal(0)] * len(weights)
    return _distribute(target, weights, weight_total)


def _unchanged(
    selections: Sequence[SplitSelection], previous: Mapping[int, Decimal] | None
) -> list[AllocatedSplit]:
    previous = previous or {}
    return [
        AllocatedSplit(
            member_id=s.member_id,
            amount=previous.get(s.member_id, Decimal(0)),
            percentage=s.percentage,
            shares=s.shares,
        )
        for s in selections
    ]


def allocate_payments(
    total: Decimal, payments: Sequence[PaymentShare]
) -> list[PaymentShare]:
    """
    Resolve payer amounts.

    A single selected payer always covers the full total. With several
    payers, each keeps the amount entered for them (missing = 0).
    """
    if len(payments) == 1:
        return [PaymentShare(member_id=payments[0].member_id, amount=total)]

    return [
        PaymentShare(member_id=p.member_id, amount=p.amount or Decimal(0))
        for p in payments
    ]


def validate_allocation(
    total: Decimal, amounts: Sequence[Decimal], label: str = "split"
) -> None:
    """
    Check that allocated amounts sum to the total within tolerance.

    Raises:
        AllocationMismatchError: If any amount is negative or the
            difference is TOLERANCE or more
    """
    actual = sum(amounts, Decimal(0))
    if any(amount < 0 for amount in amounts):
        raise AllocationMismatchError(
            label,
            expected=total,
            actual=actual,
            message=f"{label.capitalize()} amounts must not be negative",
        )
    if abs(actual - total) >= TOLERANCE:
        raise AllocationMismatchError(label, expected=total, actual=actual)


def build_split_configuration(
    total: Decimal,
    payments: Sequence[PaymentShare],
    method: SplitMethod,
    selections: Sequence[SplitSelection],
    previous: Mapping[int, Decimal] | None = None,
) -> SplitConfiguration:
    """
    Allocate payments and splits for an expense and validate both.

    This is the gate in front of persistence: a configuration that comes
    back from here is safe to store.

    Raises:
        EmptySelectionError: If no payer or no ower is selected
        AllocationMismatchError: If payments or splits don't add up
    """
    if not payments:
        raise EmptySelectionError("At least one payer must be selected")
    if not selections:
        raise EmptySelectionError("At least one member must share the expense")

    resolved_payments = allocate_payments(total, payments)
    splits = allocate(total, method, selections, previous)

    validate_allocation(total, [p.amount for p in resolved_payments], label="payment")
    validate_allocation(total, [s.amount for s in splits], label="split")

    return SplitConfiguration(
        payments=resolved_payments, split_method=method, splits=splits
    )


def equal_split_configuration(
    total: Decimal, paid_by: int, split_among: Sequence[int]
) -> SplitConfiguration:
    """Single payer covering the total, split equally among ``split_among``."""
    return build_split_configuration(
        total,
        [PaymentShare(member_id=paid_by)],
        SplitMethod.EQUAL,
        [SplitSelection(member_id=member_id) for member_id in split_among],
    )
