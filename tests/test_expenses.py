"""Tests for ExpenseService."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from splitsettle.allocator import build_split_configuration
from splitsettle.db import Database
from splitsettle.exceptions import (
    AllocationMismatchError,
    EmptySelectionError,
    ExpenseNotFoundError,
)
from splitsettle.expenses import ExpenseService
from splitsettle.models import (
    AllocatedSplit,
    CreateExpenseInput,
    PaymentShare,
    SplitConfiguration,
    SplitMethod,
    SplitSelection,
    UpdateExpenseInput,
)


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def service(db):
    return ExpenseService(db)


def shares_config(total: str) -> SplitConfiguration:
    """Member 1 pays, members 1-3 split 2:1:1."""
    return build_split_configuration(
        Decimal(total),
        [PaymentShare(member_id=1)],
        SplitMethod.SHARES,
        [
            SplitSelection(member_id=1, shares=2),
            SplitSelection(member_id=2, shares=1),
            SplitSelection(member_id=3, shares=1),
        ],
    )


def create_input(**overrides) -> CreateExpenseInput:
    data = {
        "description": "Cabin",
        "amount": Decimal("200.00"),
        "currency": "USD",
        "date": date(2024, 5, 1),
        "group_id": 1,
    }
    data.update(overrides)
    return CreateExpenseInput(**data)


class TestCreateExpense:
    def test_advanced_mode(self, service):
        created = service.create_expense(
            create_input(split_config=shares_config("200.00"))
        )

        details = service.get_expense_details(created.id)
        assert [(c.member_id, c.amount) for c in details.contributions] == [
            (1, Decimal("200.00"))
        ]
        assert [(s.member_id, s.amount, s.shares) for s in details.splits] == [
            (1, Decimal("100.00"), 2),
            (2, Decimal("50.00"), 1),
            (3, Decimal("50.00"), 1),
        ]
        assert details.splits[0].split_method == SplitMethod.SHARES

    def test_simple_mode_splits_equally(self, service):
        created = service.create_expense(
            create_input(amount=Decimal("100"), paid_by=2, split_among=[1, 2, 3])
        )

        details = service.get_expense_details(created.id)
        assert [c.member_id for c in details.contributions] == [2]
        assert [s.amount for s in details.splits] == [
            Decimal("33.34"),
            Decimal("33.33"),
            Decimal("33.33"),
        ]

    def test_mismatched_splits_not_persisted(self, service, db):
        config = SplitConfiguration(
            payments=[PaymentShare(member_id=1, amount=Decimal("200.00"))],
            split_method=SplitMethod.EXACT,
            splits=[
                AllocatedSplit(member_id=1, amount=Decimal("100.00")),
                AllocatedSplit(member_id=2, amount=Decimal("90.00")),
            ],
        )

        with pytest.raises(AllocationMismatchError, match="Split total 190.00"):
            service.create_expense(create_input(split_config=config))

        assert db.list_expenses_for_group(1) == []

    def test_mismatched_payments_not_persisted(self, service, db):
        config = SplitConfiguration(
            payments=[
                PaymentShare(member_id=1, amount=Decimal("100.00")),
                PaymentShare(member_id=2, amount=Decimal("50.00")),
            ],
            split_method=SplitMethod.EQUAL,
            splits=[AllocatedSplit(member_id=1, amount=Decimal("200.00"))],
        )

        with pytest.raises(AllocationMismatchError, match="Payment total"):
            service.create_expense(create_input(split_config=config))

        assert db.list_expenses_for_group(1) == []

    def test_negative_split_not_persisted(self, service, db):
        config = SplitConfiguration(
            payments=[PaymentShare(member_id=1, amount=Decimal("200.00"))],
            split_method=SplitMethod.EXACT,
            splits=[
                AllocatedSplit(member_id=1, amount=Decimal("300.00")),
                AllocatedSplit(member_id=2, amount=Decimal("-100.00")),
            ],
        )

        with pytest.raises(AllocationMismatchError, match="must not be negative"):
            service.create_expense(create_input(split_config=config))

        assert db.list_expenses_for_group(1) == []

    def test_requires_configuration(self, service):
        with pytest.raises(EmptySelectionError):
            service.create_expense(create_input())

    def test_requires_resolved_payer_amounts(self, service):
        config = SplitConfiguration(
            payments=[PaymentShare(member_id=1)],
            split_method=SplitMethod.EQUAL,
            splits=[AllocatedSplit(member_id=1, amount=Decimal("200.00"))],
        )

        with pytest.raises(EmptySelectionError):
            service.create_expense(create_input(split_config=config))


class TestUpdateExpense:
    def test_new_config_replaces_allocations(self, service):
        created = service.create_expense(
            create_input(split_config=shares_config("200.00"))
        )
        new_config = build_split_configuration(
            Decimal("120.00"),
            [
                PaymentShare(member_id=2, amount=Decimal("60.00")),
                PaymentShare(member_id=3, amount=Decimal("60.00")),
            ],
            SplitMethod.EQUAL,
            [SplitSelection(member_id=2), SplitSelection(member_id=3)],
        )

        updated = service.update_expense(
            created.id,
            UpdateExpenseInput(amount=Decimal("120.00"), split_config=new_config),
        )

        details = service.get_expense_details(created.id)
        assert updated.amount == Decimal("120.00")
        assert details.expense.amount == Decimal("120.00")
        assert [c.member_id for c in details.contributions] == [2, 3]
        assert [(s.member_id, s.amount) for s in details.splits] == [
            (2, Decimal("60.00")),
            (3, Decimal("60.00")),
        ]
        assert all(s.split_method == SplitMethod.EQUAL for s in details.splits)

    def test_metadata_only_update_keeps_allocations(self, service):
        created = service.create_expense(
            create_input(split_config=shares_config("200.00"))
        )

        service.update_expense(
            created.id, UpdateExpenseInput(description="Lake cabin", notes="Deposit")
        )

        details = service.get_expense_details(created.id)
        assert details.expense.description == "Lake cabin"
        assert details.expense.notes == "Deposit"
        assert len(details.splits) == 3

    def test_amount_change_without_config_rejected(self, service):
        created = service.create_expense(
            create_input(split_config=shares_config("200.00"))
        )

        with pytest.raises(AllocationMismatchError):
            service.update_expense(
                created.id, UpdateExpenseInput(amount=Decimal("250.00"))
            )

        assert service.get_expense_details(created.id).expense.amount == Decimal(
            "200.00"
        )

    def test_mismatched_config_leaves_expense_untouched(self, service):
        created = service.create_expense(
            create_input(split_config=shares_config("200.00"))
        )

        with pytest.raises(AllocationMismatchError):
            service.update_expense(
                created.id,
                UpdateExpenseInput(
                    amount=Decimal("300.00"), split_config=shares_config("200.00")
                ),
            )

        details = service.get_expense_details(created.id)
        assert details.expense.amount == Decimal("200.00")
        assert len(details.splits) == 3

    def test_clearing_required_field_rejected(self, service):
        created = service.create_expense(
            create_input(split_config=shares_config("200.00"))
        )

        with pytest.raises(ValidationError):
            service.update_expense(
                created.id, UpdateExpenseInput(description=None, notes="x")
            )
        with pytest.raises(ValidationError):
            service.update_expense(created.id, UpdateExpenseInput(amount=None))

        details = service.get_expense_details(created.id)
        assert details.expense.description == "Cabin"
        assert details.expense.notes is None

    def test_clearing_notes_allowed(self, service):
        created = service.create_expense(
            create_input(notes="Deposit", split_config=shares_config("200.00"))
        )

        service.update_expense(created.id, UpdateExpenseInput(notes=None))

        assert service.get_expense_details(created.id).expense.notes is None

    def test_missing_expense(self, service):
        with pytest.raises(ExpenseNotFoundError, match="Expense 42 not found"):
            service.update_expense(42, UpdateExpenseInput(description="x"))


class TestDeleteAndSettle:
    def test_delete_removes_allocations(self, service, db):
        created = service.create_expense(
            create_input(split_config=shares_config("200.00"))
        )

        service.delete_expense(created.id)

        assert db.list_splits(created.id) == []
        with pytest.raises(ExpenseNotFoundError):
            service.get_expense_details(created.id)

    def test_delete_missing(self, service):
        with pytest.raises(ExpenseNotFoundError):
            service.delete_expense(7)

    def test_settle_and_reopen_split(self, service):
        created = service.create_expense(
            create_input(split_config=shares_config("200.00"))
        )

        service.settle_split(created.id, 2)
        splits = service.get_expense_details(created.id).splits
        assert [s.is_settled for s in splits] == [False, True, False]

        service.settle_split(created.id, 2, settled=False)
        splits = service.get_expense_details(created.id).splits
        assert not any(s.is_settled for s in splits)

    def test_settle_unknown_member(self, service):
        created = service.create_expense(
            create_input(split_config=shares_config("200.00"))
        )

        with pytest.raises(ValueError):
            service.settle_split(created.id, 99)
