"""Pydantic domain models for SplitSettle."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field

# Field annotations below can shadow the ``date`` type inside class bodies
OptionalDate = date | None

# ============================================================================
# Enums
# ============================================================================


class SplitMethod(StrEnum):
    """How an expense total is divided among the members who owe it."""

    EQUAL = "equal"
    PERCENTAGE = "percentage"
    SHARES = "shares"
    EXACT = "exact"


class ConversionMode(StrEnum):
    """How amounts are normalized into a display currency."""

    OFF = "off"
    SIMPLE = "simple"  # today's rate for everything
    SMART = "smart"  # rate from each expense's own date


# ============================================================================
# Expense Models
# ============================================================================


class Expense(BaseModel):
    """An expense, personal (no group) or shared within a group."""

    id: int | None = None
    description: str = ""
    amount: Decimal = Field(gt=0)
    currency: str = Field(default="USD", pattern=r"^[A-Z]{3}$")
    date: date
    group_id: int | None = None
    created_by: int | None = None
    notes: str | None = None


class Contribution(BaseModel):
    """A record of one member paying part or all of one expense."""

    expense_id: int
    member_id: int
    amount: Decimal


class Split(BaseModel):
    """A record of one member's obligated share of one expense."""

    expense_id: int
    member_id: int
    amount: Decimal
    split_method: SplitMethod = SplitMethod.EQUAL
    percentage: Decimal | None = None
    shares: int | None = None
    is_settled: bool = False


class ExpenseDetails(BaseModel):
    """An expense together with its contributions and splits."""

    expense: Expense
    contributions: list[Contribution]
    splits: list[Split]


# ============================================================================
# Split Configuration Models
# ============================================================================


class SplitSelection(BaseModel):
    """A selected member plus the method-specific input for that member."""

    member_id: int
    percentage: Decimal | None = None  # percentage method
    shares: int | None = None  # shares method
    amount: Decimal | None = None  # exact method


class AllocatedSplit(BaseModel):
    """A concrete per-member amount produced by the split allocator."""

    member_id: int
    amount: Decimal
    percentage: Decimal | None = None
    shares: int | None = None


class PaymentShare(BaseModel):
    """A payer and the amount they put toward the expense."""

    member_id: int
    amount: Decimal | None = None  # None = fill in from the total


class SplitConfiguration(BaseModel):
    """Who paid and who owes for a single expense.

    Produced by ``build_split_configuration`` after the payment and split
    totals have both been validated against the expense amount.
    """

    payments: list[PaymentShare]
    split_method: SplitMethod
    splits: list[AllocatedSplit]


class CreateExpenseInput(BaseModel):
    """Input for creating an expense.

    Either ``split_config`` (advanced mode) or ``paid_by`` plus
    ``split_among`` (simple mode: one payer, equal split) should be given.
    """

    description: str = ""
    amount: Decimal = Field(gt=0)
    currency: str = Field(default="USD", pattern=r"^[A-Z]{3}$")
    date: date
    group_id: int | None = None
    created_by: int | None = None
    notes: str | None = None
    split_config: SplitConfiguration | None = None
    paid_by: int | None = None
    split_among: list[int] | None = None


class UpdateExpenseInput(BaseModel):
    """Partial update for an expense. Unset fields are left unchanged."""

    description: str | None = None
    amount: Decimal | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, pattern=r"^[A-Z]{3}$")
    date: OptionalDate = None
    notes: str | None = None
    split_config: SplitConfiguration | None = None


# ============================================================================
# Currency Models
# ============================================================================


class ExchangeRate(BaseModel):
    """An exchange rate valid for one calendar date."""

    base_currency: str
    target_currency: str
    rate_date: date
    rate: Decimal
    fetched_at: datetime = Field(default_factory=datetime.now)


class Money(BaseModel):
    """An amount in a given currency."""

    amount: Decimal
    currency: str


class ConvertedValue(BaseModel):
    """The converted side of a ConvertedAmount."""

    amount: Decimal
    currency: str
    rate: Decimal
    rate_date: date
    approximate: bool = False  # fallback rate from another date


class ConvertedAmount(BaseModel):
    """Original amount and, when conversion applied, the converted amount."""

    original: Money
    converted: ConvertedValue | None = None


# ============================================================================
# Balance Models
# ============================================================================


class UserBalance(BaseModel):
    """A member's position in a group. Positive net = owed money."""

    member_id: int
    total_paid: Decimal = Decimal("0")
    total_owes: Decimal = Decimal("0")
    net_balance: Decimal = Decimal("0")


class Debt(BaseModel):
    """A settlement edge: ``from_member`` pays ``to_member``."""

    from_member: int
    to_member: int
    amount: Decimal


class GroupBalanceSummary(BaseModel):
    """Balances and the simplified settlement plan for a group."""

    group_id: int
    total_expenses: Decimal
    user_balances: list[UserBalance]
    simplified_debts: list[Debt]
    display_currency: str | None = None
    conversion_mode: ConversionMode | None = None
    approximate_rates: bool = False  # any conversion used a fallback rate
