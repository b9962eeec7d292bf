"""Group balance calculation and settlement plans."""

import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from decimal import Decimal

from .allocator import distribute, round_money
from .currency import CurrencyConverter
from .db import Database
from .exceptions import ConfigurationError, MixedCurrencyError
from .models import (
    Contribution,
    ConversionMode,
    Expense,
    GroupBalanceSummary,
    Split,
    UserBalance,
)
from .simplifier import balance_between, simplify_debts

logger = logging.getLogger(__name__)


class BalanceService:
    """Computes member balances and simplified debts for a group."""

    def __init__(
        self,
        database: Database,
        converter: CurrencyConverter | None = None,
        allow_mixed_currencies: bool = False,
    ):
        """
        Initialize the balance service.

        Args:
            database: Source of members, expenses, contributions and splits
            converter: Needed only when balances are requested with conversion
            allow_mixed_currencies: Sum raw amounts across currencies when
                conversion is off instead of raising MixedCurrencyError
        """
        self.db = database
        self.converter = converter
        self.allow_mixed_currencies = allow_mixed_currencies

    def calculate_group_balances(
        self,
        group_id: int,
        display_currency: str | None = None,
        conversion_mode: ConversionMode | None = None,
    ) -> GroupBalanceSummary:
        """
        Calculate balances for all members of a group.

        Every member starts at zero; contributions add to ``total_paid``,
        unsettled splits add to ``total_owes``. Settled splits only count
        toward ``total_expenses``. With conversion on, each expense total is
        converted once with its own rate and spread back over its
        contributions and splits in whole cents, so converted balances
        still sum to zero.

        Args:
            group_id: The group to summarize
            display_currency: Currency to normalize into (conversion only)
            conversion_mode: off, simple or smart (default off)

        Returns:
            Balance summary with the simplified settlement plan

        Raises:
            MixedCurrencyError: Conversion is off and the group mixes currencies
            RateUnavailableError: A needed rate could not be resolved
        """
        mode = conversion_mode or ConversionMode.OFF
        converting = mode != ConversionMode.OFF
        if converting and not display_currency:
            raise ValueError("display_currency is required when conversion is on")
        if converting and self.converter is None:
            raise ConfigurationError("Currency conversion requested without a converter")

        summary_currency = display_currency if converting else None
        summary_mode = conversion_mode if converting else None

        members = self.db.list_group_members(group_id)
        if not members:
            logger.info(f"Group {group_id} has no members")
            return GroupBalanceSummary(
                group_id=group_id,
                total_expenses=Decimal("0.00"),
                user_balances=[],
                simplified_debts=[],
                display_currency=summary_currency,
                conversion_mode=summary_mode,
            )

        contributions = self.db.list_contributions_for_group(group_id)
        splits = self.db.list_splits_for_group(group_id)
        expenses = {e.id: e for e in self.db.list_expenses_for_group(group_id)}

        approximate = False
        if converting:
            rates, approximate = self._resolve_rates(expenses, display_currency, mode)
            contributions = _convert_rows(contributions, rates)
            splits = _convert_rows(splits, rates)
            if approximate:
                logger.warning(
                    f"Group {group_id} balances use approximate exchange rates"
                )
        else:
            self._check_single_currency(group_id, expenses.values())

        # Initialize all members with zero balances
        paid = {member_id: Decimal(0) for member_id in members}
        owes = {member_id: Decimal(0) for member_id in members}

        for contribution in contributions:
            if contribution.member_id in paid:
                paid[contribution.member_id] += contribution.amount

        total_expenses = Decimal(0)
        for split in splits:
            total_expenses += split.amount
            if not split.is_settled and split.member_id in owes:
                owes[split.member_id] += split.amount

        user_balances = [
            UserBalance(
                member_id=member_id,
                total_paid=round_money(paid[member_id]),
                total_owes=round_money(owes[member_id]),
                net_balance=round_money(paid[member_id] - owes[member_id]),
            )
            for member_id in members
        ]

        simplified_debts = simplify_debts(user_balances)

        logger.info(
            f"Group {group_id}: {len(user_balances)} balances, "
            f"{len(simplified_debts)} settlement transfers"
        )

        return GroupBalanceSummary(
            group_id=group_id,
            total_expenses=round_money(total_expenses),
            user_balances=user_balances,
            simplified_debts=simplified_debts,
            display_currency=summary_currency,
            conversion_mode=summary_mode,
            approximate_rates=approximate,
        )

    def get_balance_between_users(
        self,
        group_id: int,
        member_a: int,
        member_b: int,
        display_currency: str | None = None,
        conversion_mode: ConversionMode | None = None,
    ) -> Decimal:
        """
        Get the settlement amount between two members of a group.

        Returns:
            Positive if ``member_a`` is owed by ``member_b``, negative if
            ``member_a`` owes ``member_b``, zero if they don't settle directly
        """
        summary = self.calculate_group_balances(
            group_id, display_currency=display_currency, conversion_mode=conversion_mode
        )
        return balance_between(summary.simplified_debts, member_a, member_b)

    def _check_single_currency(self, group_id: int, expenses) -> None:
        currencies = sorted({e.currency for e in expenses})
        if len(currencies) <= 1:
            return
        if not self.allow_mixed_currencies:
            raise MixedCurrencyError(currencies)
        logger.warning(
            f"Group {group_id} mixes currencies ({', '.join(currencies)}) "
            f"without conversion; totals are not in a single unit"
        )

    def _resolve_rates(
        self,
        expenses: dict[int, Expense],
        display_currency: str,
        mode: ConversionMode,
    ) -> tuple[dict[int, Decimal], bool]:
        """Resolve one rate per expense not already in the display currency.

        Rates come from a single batch call; anything missing from the batch
        is looked up on demand, which raises RateUnavailableError when every
        fallback is exhausted.

        Returns:
            Rate per expense id, and whether any of them is approximate
        """
        converter = self.converter
        conversions = converter.convert_batch(
            list(expenses.values()), display_currency, mode
        )

        rates: dict[int, Decimal] = {}
        approximate = False
        for expense_id, expense in expenses.items():
            if expense.currency == display_currency:
                continue

            conversion = conversions.get(expense_id)
            if conversion is not None and conversion.converted is not None:
                rates[expense_id] = conversion.converted.rate
                approximate = approximate or conversion.converted.approximate
                continue

            if mode == ConversionMode.SIMPLE:
                resolved = converter.resolve_current(expense.currency, display_currency)
            else:
                resolved = converter.resolve_historical(
                    expense.currency, display_currency, expense.date
                )
            rates[expense_id] = resolved.rate
            approximate = approximate or resolved.approximate

        return rates, approximate


def _convert_rows(
    rows: Sequence[Contribution | Split], rates: Mapping[int, Decimal]
) -> list[Contribution | Split]:
    """Convert rows expense by expense, keeping each expense's rows in cents.

    The expense's row total is converted and rounded once, then spread over
    its rows in proportion to their original amounts. Rows of expenses
    without a rate are already in the display currency.
    """
    by_expense: dict[int, list[int]] = defaultdict(list)
    for index, row in enumerate(rows):
        by_expense[row.expense_id].append(index)

    converted = list(rows)
    for expense_id, indexes in by_expense.items():
        rate = rates.get(expense_id)
        if rate is None:
            continue

        originals = [rows[i].amount for i in indexes]
        target = CurrencyConverter.convert(sum(originals, Decimal(0)), rate)
        for i, amount in zip(indexes, distribute(target, originals)):
            converted[i] = rows[i].model_copy(update={"amount": amount})

    return converted
