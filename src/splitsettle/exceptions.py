"""Custom exceptions for SplitSettle."""

from datetime import date
from decimal import Decimal


class SplitSettleError(Exception):
    """Base exception for all SplitSettle errors."""

    pass


class ConfigurationError(SplitSettleError):
    """Raised when configuration is invalid or missing."""

    pass


class AllocationMismatchError(SplitSettleError):
    """Raised when payments or splits don't sum to the expense total."""

    def __init__(
        self,
        label: str,
        expected: Decimal,
        actual: Decimal,
        message: str | None = None,
    ):
        self.label = label
        self.expected = expected
        self.actual = actual
        super().__init__(
            message
            or f"{label.capitalize()} total {actual} does not match "
            f"expense total {expected} (difference {actual - expected})"
        )


class EmptySelectionError(SplitSettleError):
    """Raised when a split configuration selects no payers or no owers."""

    pass


class ExpenseNotFoundError(SplitSettleError):
    """Raised when an expense id does not exist."""

    def __init__(self, expense_id: int):
        self.expense_id = expense_id
        super().__init__(f"Expense {expense_id} not found")


class MixedCurrencyError(SplitSettleError):
    """Raised when balances would sum amounts in different currencies."""

    def __init__(self, currencies: list[str]):
        self.currencies = currencies
        super().__init__(
            f"Group mixes currencies ({', '.join(currencies)}); "
            f"enable currency conversion to compute balances"
        )


class RateUnavailableError(SplitSettleError):
    """Raised when no exchange rate can be resolved for a currency pair."""

    def __init__(self, base: str, target: str, rate_date: date | None = None):
        self.base = base
        self.target = target
        self.rate_date = rate_date
        when = f" on {rate_date.isoformat()}" if rate_date else ""
        super().__init__(f"Unable to get exchange rate for {base} to {target}{when}")


class APIError(SplitSettleError):
    """Base class for API-related errors."""

    pass


class RemoteSourceError(APIError):
    """Raised when the exchange rate API request fails."""

    pass
