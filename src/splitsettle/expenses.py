"""Expense service: validated create/update with wholesale allocation replacement."""

import logging

from .allocator import equal_split_configuration, validate_allocation
from .db import Database
from .exceptions import EmptySelectionError, ExpenseNotFoundError
from .models import (
    CreateExpenseInput,
    Expense,
    ExpenseDetails,
    SplitConfiguration,
    UpdateExpenseInput,
)

logger = logging.getLogger(__name__)


class ExpenseService:
    """Service for creating and editing expenses with their splits."""

    def __init__(self, database: Database):
        """Initialize the expense service."""
        self.db = database

    def create_expense(self, data: CreateExpenseInput) -> Expense:
        """
        Create an expense with its contributions and splits.

        Supports advanced mode (``split_config``) and simple mode
        (``paid_by`` + ``split_among``, equal split). Nothing is written
        unless payments and splits both sum to the amount.

        Raises:
            AllocationMismatchError: If the configuration doesn't add up
            EmptySelectionError: If no usable configuration was given
        """
        if data.split_config is not None:
            config = data.split_config
            _validate_config(data.amount, config)
        elif data.paid_by is not None and data.split_among:
            config = equal_split_configuration(data.amount, data.paid_by, data.split_among)
        else:
            raise EmptySelectionError(
                "An expense needs a split configuration or a payer and members"
            )

        expense = Expense(
            description=data.description,
            amount=data.amount,
            currency=data.currency,
            date=data.date,
            group_id=data.group_id,
            created_by=data.created_by,
            notes=data.notes,
        )
        created = self.db.create_expense(expense, config)

        logger.info(
            f"Created expense {created.id} ({created.amount} {created.currency}) "
            f"with {len(config.payments)} payers and {len(config.splits)} splits"
        )
        return created

    def update_expense(self, expense_id: int, data: UpdateExpenseInput) -> Expense:
        """
        Update an expense.

        When ``split_config`` is given, all contributions and splits are
        deleted and recreated from it. When only the amount changes, the
        stored allocations must still add up to the new amount.

        Raises:
            ExpenseNotFoundError: If the expense doesn't exist
            AllocationMismatchError: If allocations don't match the amount
            ValidationError: If a required field is cleared or invalid
        """
        existing = self.db.get_expense(expense_id)
        if existing is None:
            raise ExpenseNotFoundError(expense_id)

        # Re-validated as a whole so explicit None on required fields is rejected
        changes = data.model_dump(exclude_unset=True, exclude={"split_config"})
        updated = Expense.model_validate({**existing.model_dump(), **changes})

        if data.split_config is not None:
            _validate_config(updated.amount, data.split_config)
        elif updated.amount != existing.amount:
            validate_allocation(
                updated.amount,
                [c.amount for c in self.db.list_contributions(expense_id)],
                label="payment",
            )
            validate_allocation(
                updated.amount,
                [s.amount for s in self.db.list_splits(expense_id)],
                label="split",
            )

        self.db.update_expense(updated, data.split_config)
        logger.info(
            f"Updated expense {expense_id}"
            + (" (allocations replaced)" if data.split_config else "")
        )
        return updated

    def delete_expense(self, expense_id: int) -> None:
        """Delete an expense together with its contributions and splits."""
        if not self.db.delete_expense(expense_id):
            raise ExpenseNotFoundError(expense_id)
        logger.info(f"Deleted expense {expense_id}")

    def get_expense_details(self, expense_id: int) -> ExpenseDetails:
        """Get an expense with its contributions and splits."""
        expense = self.db.get_expense(expense_id)
        if expense is None:
            raise ExpenseNotFoundError(expense_id)

        return ExpenseDetails(
            expense=expense,
            contributions=self.db.list_contributions(expense_id),
            splits=self.db.list_splits(expense_id),
        )

    def settle_split(self, expense_id: int, member_id: int, settled: bool = True):
        """Mark a member's share of an expense as settled (or reopen it)."""
        if self.db.get_expense(expense_id) is None:
            raise ExpenseNotFoundError(expense_id)

        if not self.db.set_split_settled(expense_id, member_id, settled):
            raise ValueError(f"Member {member_id} has no split on expense {expense_id}")

        logger.info(
            f"Marked split of member {member_id} on expense {expense_id} "
            f"as {'settled' if settled else 'unsettled'}"
        )


def _validate_config(amount, config: SplitConfiguration) -> None:
    """Re-check a configuration against the expense amount before writing it."""
    if not config.payments or not config.splits:
        raise EmptySelectionError("At least one payer and one member are required")
    if any(p.amount is None for p in config.payments):
        raise EmptySelectionError("Every payer needs a resolved amount")

    validate_allocation(amount, [p.amount for p in config.payments], label="payment")
    validate_allocation(amount, [s.amount for s in config.splits], label="split")
