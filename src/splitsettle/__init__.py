"""SplitSettle - Group expense balances, currency conversion and settlement plans."""

__version__ = "0.1.0"

from .allocator import allocate, build_split_configuration, validate_allocation
from .balances import BalanceService
from .config import Settings, load_settings
from .currency import CurrencyConverter, CurrentRateCache
from .db import Database
from .expenses import ExpenseService
from .models import (
    ConversionMode,
    Debt,
    GroupBalanceSummary,
    SplitMethod,
    SplitSelection,
    UserBalance,
)
from .simplifier import simplify_debts

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "allocate",
    "build_split_configuration",
    "validate_allocation",
    "BalanceService",
    "CurrencyConverter",
    "CurrentRateCache",
    "ExpenseService",
    "ConversionMode",
    "Debt",
    "GroupBalanceSummary",
    "SplitMethod",
    "SplitSelection",
    "UserBalance",
    "simplify_debts",
]
