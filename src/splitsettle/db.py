"""SQLite database operations for SplitSettle."""

import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from decimal import Decimal
from pathlib import Path

from .models import (
    Contribution,
    ExchangeRate,
    Expense,
    Split,
    SplitConfiguration,
    SplitMethod,
)

logger = logging.getLogger(__name__)


class Database:
    """SQLite database manager.

    Amounts and rates are stored as TEXT so Decimal values round-trip
    without precision loss. The connection is shared between threads
    (batch rate resolution runs in a thread pool), so every statement
    runs under a lock.
    """

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # Group membership table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS group_members (
                group_id INTEGER NOT NULL,
                member_id INTEGER NOT NULL,
                joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (group_id, member_id)
            )
        """
        )

        # Expenses table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                description TEXT NOT NULL DEFAULT '',
                amount TEXT NOT NULL,
                currency TEXT NOT NULL,
                date DATE NOT NULL,
                group_id INTEGER,
                created_by INTEGER,
                notes TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        # Contributions table (who paid)
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_contributions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                expense_id INTEGER NOT NULL
                    REFERENCES expenses(id) ON DELETE CASCADE,
                member_id INTEGER NOT NULL,
                amount TEXT NOT NULL
            )
        """
        )

        # Splits table (who owes)
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_splits (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                expense_id INTEGER NOT NULL
                    REFERENCES expenses(id) ON DELETE CASCADE,
                member_id INTEGER NOT NULL,
                amount TEXT NOT NULL,
                split_type TEXT NOT NULL,
                percentage TEXT,
                shares INTEGER,
                is_settled INTEGER NOT NULL DEFAULT 0
            )
        """
        )

        # Exchange rate cache
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS exchange_rates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                base_currency TEXT NOT NULL,
                target_currency TEXT NOT NULL,
                rate_date DATE NOT NULL,
                rate TEXT NOT NULL,
                fetched_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (base_currency, target_currency, rate_date)
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Group membership operations
    # ========================================================================

    def add_group_member(self, group_id: int, member_id: int):
        """Add a member to a group (no-op if already a member)."""
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO group_members (group_id, member_id, joined_at)
                VALUES (?, ?, ?)
                ON CONFLICT(group_id, member_id) DO NOTHING
                """,
                (group_id, member_id, datetime.now().isoformat()),
            )

    def list_group_members(self, group_id: int) -> list[int]:
        """List member ids of a group in the order they joined."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT member_id FROM group_members WHERE group_id = ? ORDER BY rowid",
                (group_id,),
            ).fetchall()
        return [row["member_id"] for row in rows]

    # ========================================================================
    # Expense operations
    # ========================================================================

    def create_expense(self, expense: Expense, config: SplitConfiguration) -> Expense:
        """Insert an expense with its contributions and splits atomically."""
        with self._lock, self.conn:
            cursor = self.conn.execute(
                """
                INSERT INTO expenses (
                    description, amount, currency, date, group_id,
                    created_by, notes
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    expense.description,
                    str(expense.amount),
                    expense.currency,
                    expense.date.isoformat(),
                    expense.group_id,
                    expense.created_by,
                    expense.notes,
                ),
            )
            expense_id = cursor.lastrowid
            if expense_id is None:
                raise RuntimeError("Failed to insert expense record")
            self._insert_allocations(expense_id, config)

        return expense.model_copy(update={"id": expense_id})

    def update_expense(
        self, expense: Expense, config: SplitConfiguration | None = None
    ) -> Expense:
        """
        Update an expense row, replacing its allocations when a config is given.

        Contributions and splits are never patched: all existing rows are
        deleted and the new configuration is inserted in the same transaction.
        """
        if expense.id is None:
            raise ValueError("Cannot update an expense without an id")

        with self._lock, self.conn:
            self.conn.execute(
                """
                UPDATE expenses SET
                    description = ?, amount = ?, currency = ?, date = ?,
                    notes = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    expense.description,
                    str(expense.amount),
                    expense.currency,
                    expense.date.isoformat(),
                    expense.notes,
                    datetime.now().isoformat(),
                    expense.id,
                ),
            )
            if config is not None:
                self.conn.execute(
                    "DELETE FROM expense_contributions WHERE expense_id = ?",
                    (expense.id,),
                )
                self.conn.execute(
                    "DELETE FROM expense_splits WHERE expense_id = ?", (expense.id,)
                )
                self._insert_allocations(expense.id, config)

        return expense

    def _insert_allocations(self, expense_id: int, config: SplitConfiguration):
        """Insert contribution and split rows. Caller holds the transaction."""
        self.conn.executemany(
            """
            INSERT INTO expense_contributions (expense_id, member_id, amount)
            VALUES (?, ?, ?)
            """,
            [
                (expense_id, payment.member_id, str(payment.amount))
                for payment in config.payments
            ],
        )
        self.conn.executemany(
            """
            INSERT INTO expense_splits (
                expense_id, member_id, amount, split_type, percentage, shares
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    expense_id,
                    split.member_id,
                    str(split.amount),
                    config.split_method.value,
                    str(split.percentage) if split.percentage is not None else None,
                    split.shares,
                )
                for split in config.splits
            ],
        )

    def delete_expense(self, expense_id: int) -> bool:
        """Delete an expense; contributions and splits cascade."""
        with self._lock, self.conn:
            cursor = self.conn.execute(
                "DELETE FROM expenses WHERE id = ?", (expense_id,)
            )
        return cursor.rowcount > 0

    def get_expense(self, expense_id: int) -> Expense | None:
        """Get an expense by id."""
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM expenses WHERE id = ?", (expense_id,)
            ).fetchone()
        return _expense_from_row(row) if row else None

    def list_contributions(self, expense_id: int) -> list[Contribution]:
        """Get contributions for one expense."""
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT expense_id, member_id, amount
                FROM expense_contributions
                WHERE expense_id = ?
                ORDER BY id
                """,
                (expense_id,),
            ).fetchall()
        return [_contribution_from_row(row) for row in rows]

    def list_splits(self, expense_id: int) -> list[Split]:
        """Get splits for one expense."""
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT expense_id, member_id, amount, split_type, percentage,
                       shares, is_settled
                FROM expense_splits
                WHERE expense_id = ?
                ORDER BY id
                """,
                (expense_id,),
            ).fetchall()
        return [_split_from_row(row) for row in rows]

    def set_split_settled(
        self, expense_id: int, member_id: int, settled: bool = True
    ) -> bool:
        """Mark a member's split of an expense as settled (or unsettled)."""
        with self._lock, self.conn:
            cursor = self.conn.execute(
                """
                UPDATE expense_splits SET is_settled = ?
                WHERE expense_id = ? AND member_id = ?
                """,
                (int(settled), expense_id, member_id),
            )
        return cursor.rowcount > 0

    # ========================================================================
    # Group balance queries
    # ========================================================================

    def list_expenses_for_group(self, group_id: int) -> list[Expense]:
        """Get all expenses for a group, newest first."""
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM expenses WHERE group_id = ? ORDER BY date DESC, id",
                (group_id,),
            ).fetchall()
        return [_expense_from_row(row) for row in rows]

    def list_contributions_for_group(self, group_id: int) -> list[Contribution]:
        """Get all contributions for a group's expenses."""
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT c.expense_id, c.member_id, c.amount
                FROM expense_contributions c
                JOIN expenses e ON e.id = c.expense_id
                WHERE e.group_id = ?
                ORDER BY c.id
                """,
                (group_id,),
            ).fetchall()
        return [_contribution_from_row(row) for row in rows]

    def list_splits_for_group(self, group_id: int) -> list[Split]:
        """Get all splits for a group's expenses."""
        with self._lock:
            rows = self.conn.execute(
                """
                SELECT s.expense_id, s.member_id, s.amount, s.split_type,
                       s.percentage, s.shares, s.is_settled
                FROM expense_splits s
                JOIN expenses e ON e.id = s.expense_id
                WHERE e.group_id = ?
                ORDER BY s.id
                """,
                (group_id,),
            ).fetchall()
        return [_split_from_row(row) for row in rows]

    # ========================================================================
    # Exchange rate cache operations
    # ========================================================================

    def find_cached_rate(
        self, base: str, target: str, rate_date: date
    ) -> ExchangeRate | None:
        """Get the cached rate for an exact (base, target, date)."""
        with self._lock:
            row = self.conn.execute(
                """
                SELECT base_currency, target_currency, rate_date, rate, fetched_at
                FROM exchange_rates
                WHERE base_currency = ? AND target_currency = ? AND rate_date = ?
                """,
                (base, target, rate_date.isoformat()),
            ).fetchone()
        return _rate_from_row(row) if row else None

    def find_cached_rates(
        self, base: str, target: str, dates: Iterable[date]
    ) -> dict[date, ExchangeRate]:
        """Get cached rates for several dates of one pair, keyed by date."""
        date_strings = sorted({d.isoformat() for d in dates})
        if not date_strings:
            return {}

        placeholders = ", ".join("?" for _ in date_strings)
        with self._lock:
            rows = self.conn.execute(
                f"""
                SELECT base_currency, target_currency, rate_date, rate, fetched_at
                FROM exchange_rates
                WHERE base_currency = ? AND target_currency = ?
                  AND rate_date IN ({placeholders})
                """,
                (base, target, *date_strings),
            ).fetchall()

        rates = (_rate_from_row(row) for row in rows)
        return {rate.rate_date: rate for rate in rates}

    def find_latest_cached_rate(self, base: str, target: str) -> ExchangeRate | None:
        """Get the most recent cached rate for a pair, of any date."""
        with self._lock:
            row = self.conn.execute(
                """
                SELECT base_currency, target_currency, rate_date, rate, fetched_at
                FROM exchange_rates
                WHERE base_currency = ? AND target_currency = ?
                ORDER BY rate_date DESC
                LIMIT 1
                """,
                (base, target),
            ).fetchone()
        return _rate_from_row(row) if row else None

    def upsert_rate(
        self, base: str, target: str, rate_date: date, rate: Decimal
    ) -> ExchangeRate:
        """Insert or replace the rate for (base, target, date)."""
        fetched_at = datetime.now()
        with self._lock, self.conn:
            self.conn.execute(
                """
                INSERT INTO exchange_rates (
                    base_currency, target_currency, rate_date, rate, fetched_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(base_currency, target_currency, rate_date) DO UPDATE SET
                    rate = excluded.rate,
                    fetched_at = excluded.fetched_at
                """,
                (base, target, rate_date.isoformat(), str(rate), fetched_at.isoformat()),
            )
        return ExchangeRate(
            base_currency=base,
            target_currency=target,
            rate_date=rate_date,
            rate=rate,
            fetched_at=fetched_at,
        )

    def prune_rates(self, keep_days: int = 365, today: date | None = None) -> int:
        """Delete cached rates older than ``keep_days``. Returns rows removed."""
        cutoff = (today or date.today()) - timedelta(days=keep_days)
        with self._lock, self.conn:
            cursor = self.conn.execute(
                "DELETE FROM exchange_rates WHERE rate_date < ?", (cutoff.isoformat(),)
            )
        logger.info(f"Pruned {cursor.rowcount} exchange rates older than {cutoff}")
        return cursor.rowcount


# ============================================================================
# Row mapping
# ============================================================================


def _expense_from_row(row: sqlite3.Row) -> Expense:
    return Expense(
        id=row["id"],
        description=row["description"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        date=date.fromisoformat(row["date"]),
        group_id=row["group_id"],
        created_by=row["created_by"],
        notes=row["notes"],
    )


def _contribution_from_row(row: sqlite3.Row) -> Contribution:
    return Contribution(
        expense_id=row["expense_id"],
        member_id=row["member_id"],
        amount=Decimal(row["amount"]),
    )


def _split_from_row(row: sqlite3.Row) -> Split:
    return Split(
        expense_id=row["expense_id"],
        member_id=row["member_id"],
        amount=Decimal(row["amount"]),
        split_method=SplitMethod(row["split_type"]),
        percentage=Decimal(row["percentage"]) if row["percentage"] else None,
        shares=row["shares"],
        is_settled=bool(row["is_settled"]),
    )


def _rate_from_row(row: sqlite3.Row) -> ExchangeRate:
    return ExchangeRate(
        base_currency=row["base_currency"],
        target_currency=row["target_currency"],
        rate_date=date.fromisoformat(row["rate_date"]),
        rate=Decimal(row["rate"]),
        fetched_at=datetime.fromisoformat(row["fetched_at"]),
    )
