"""SQLite database operations for Monee Split."""

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from .exceptions import NotFoundError, PersistenceError
from .models import (
    Category,
    Expense,
    Group,
    Member,
    Membership,
    Role,
    Share,
    SplitMode,
    User,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("Food & Drinks", "#fee2e2"),
    ("Transport", "#dbeafe"),
    ("Accommodation", "#fef3c7"),
    ("Shopping", "#fef9c3"),
    ("Bills & Utilities", "#e5e7eb"),
    ("Entertainment", "#ede9fe"),
    ("Others", "#dcfce7"),
]

_EXPENSE_COLUMNS = """
    e.id, e.group_id, e.payer_id, e.title, e.amount, e.currency,
    e.fx_to_base, e.amount_in_base, e.expense_date, e.note, e.category_id,
    e.category_name_snapshot, e.split_mode, e.created_at,
    s.member_id AS share_member_id, s.amount AS share_amount
"""


class Database:
    """
    SQLite database manager.

    Every write that touches an expense together with its shares runs in a
    single transaction; on failure the transaction is rolled back and a
    PersistenceError is raised, so no partial rows are left behind.
    """

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT NOT NULL UNIQUE,
                name TEXT,
                base_currency TEXT NOT NULL DEFAULT 'USD',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                name TEXT NOT NULL,
                color TEXT,
                is_active INTEGER NOT NULL DEFAULT 1
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_groups (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                slug TEXT NOT NULL UNIQUE,
                base_currency TEXT NOT NULL,
                created_by INTEGER NOT NULL REFERENCES users(id),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS group_members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id INTEGER NOT NULL REFERENCES expense_groups(id),
                user_id INTEGER NOT NULL REFERENCES users(id),
                role TEXT NOT NULL,
                joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (group_id, user_id)
            )
        """
        )

        # Money columns are stored as TEXT to keep Decimal precision
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                group_id INTEGER REFERENCES expense_groups(id),
                payer_id INTEGER NOT NULL REFERENCES users(id),
                title TEXT NOT NULL,
                amount TEXT NOT NULL,
                currency TEXT NOT NULL,
                fx_to_base TEXT NOT NULL,
                amount_in_base TEXT NOT NULL,
                expense_date DATE NOT NULL,
                note TEXT,
                category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL,
                category_name_snapshot TEXT,
                split_mode TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expense_shares (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                expense_id INTEGER NOT NULL REFERENCES expenses(id) ON DELETE CASCADE,
                member_id INTEGER NOT NULL REFERENCES users(id),
                amount TEXT NOT NULL,
                UNIQUE (expense_id, member_id)
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Cursor]:
        """Run a block in one transaction, wrapping sqlite failures."""
        try:
            with self.conn:
                yield self.conn.cursor()
        except sqlite3.Error as e:
            logger.error(f"Failed to {action}: {e}")
            raise PersistenceError(f"Failed to {action}: {e}") from e

    # ========================================================================
    # User operations
    # ========================================================================

    def create_user(self, user: User) -> User:
        """Save a user and return it with its id."""
        with self._transaction("create user") as cursor:
            cursor.execute(
                """
                INSERT INTO users (email, name, base_currency, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (user.email, user.name, user.base_currency, user.created_at.isoformat()),
            )
            user_id = cursor.lastrowid
        return user.model_copy(update={"id": user_id})

    def get_user(self, user_id: int) -> User | None:
        """Get a user by id."""
        row = self.conn.execute(
            "SELECT id, email, name, base_currency, created_at FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> User | None:
        """Get a user by (normalized) email."""
        row = self.conn.execute(
            "SELECT id, email, name, base_currency, created_at FROM users "
            "WHERE email = ?",
            (email,),
        ).fetchone()
        return _row_to_user(row) if row else None

    # ========================================================================
    # Category operations
    # ========================================================================

    def create_category(self, category: Category) -> Category:
        """Save a category and return it with its id."""
        with self._transaction("create category") as cursor:
            cursor.execute(
                """
                INSERT INTO categories (user_id, name, color, is_active)
                VALUES (?, ?, ?, ?)
                """,
                (category.user_id, category.name, category.color, category.is_active),
            )
            category_id = cursor.lastrowid
        return category.model_copy(update={"id": category_id})

    def get_category(self, category_id: int) -> Category | None:
        """Get a category by id."""
        row = self.conn.execute(
            "SELECT id, user_id, name, color, is_active FROM categories WHERE id = ?",
            (category_id,),
        ).fetchone()
        return _row_to_category(row) if row else None

    def list_categories(self, user_id: int, active_only: bool = True) -> list[Category]:
        """Get a user's categories ordered by name."""
        query = "SELECT id, user_id, name, color, is_active FROM categories WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY name ASC"
        return [_row_to_category(row) for row in self.conn.execute(query, (user_id,))]

    def rename_category(self, category_id: int, name: str):
        """Rename a category. Expenses keep their name snapshot."""
        with self._transaction("rename category") as cursor:
            cursor.execute(
                "UPDATE categories SET name = ? WHERE id = ?", (name, category_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Category {category_id} not found")

    def seed_default_categories(self, user_id: int) -> list[Category]:
        """Create the default categories for a user who has none."""
        existing = self.list_categories(user_id)
        if existing:
            return existing

        with self._transaction("seed default categories") as cursor:
            cursor.executemany(
                "INSERT INTO categories (user_id, name, color) VALUES (?, ?, ?)",
                [(user_id, name, color) for name, color in DEFAULT_CATEGORIES],
            )
        return self.list_categories(user_id)

    # ========================================================================
    # Group and membership operations
    # ========================================================================

    def create_group(self, group: Group) -> Group:
        """Save a group and make its creator an ADMIN, atomically."""
        with self._transaction("create group") as cursor:
            cursor.execute(
                """
                INSERT INTO expense_groups (name, slug, base_currency, created_by, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    group.name,
                    group.slug,
                    group.base_currency,
                    group.created_by,
                    group.created_at.isoformat(),
                ),
            )
            group_id = cursor.lastrowid
            cursor.execute(
                """
                INSERT INTO group_members (group_id, user_id, role, joined_at)
                VALUES (?, ?, ?, ?)
                """,
                (group_id, group.created_by, Role.ADMIN.value, datetime.now().isoformat()),
            )
        return group.model_copy(update={"id": group_id})

    def get_group(self, group_id: int) -> Group | None:
        """Get a group by id."""
        row = self.conn.execute(
            "SELECT id, name, slug, base_currency, created_by, created_at "
            "FROM expense_groups WHERE id = ?",
            (group_id,),
        ).fetchone()
        return _row_to_group(row) if row else None

    def get_group_by_slug(self, slug: str) -> Group | None:
        """Get a group by slug."""
        row = self.conn.execute(
            "SELECT id, name, slug, base_currency, created_by, created_at "
            "FROM expense_groups WHERE slug = ?",
            (slug,),
        ).fetchone()
        return _row_to_group(row) if row else None

    def list_groups_for_user(self, user_id: int) -> list[Group]:
        """Get every group the user belongs to."""
        rows = self.conn.execute(
            """
            SELECT g.id, g.name, g.slug, g.base_currency, g.created_by, g.created_at
            FROM expense_groups g
            JOIN group_members gm ON gm.group_id = g.id
            WHERE gm.user_id = ?
            ORDER BY g.created_at DESC, g.id DESC
            """,
            (user_id,),
        )
        return [_row_to_group(row) for row in rows]

    def update_group_name(self, group_id: int, name: str):
        """Rename a group."""
        with self._transaction("update group name") as cursor:
            cursor.execute(
                "UPDATE expense_groups SET name = ? WHERE id = ?", (name, group_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Group {group_id} not found")

    def get_membership(self, group_id: int, user_id: int) -> Membership | None:
        """Get a user's membership in a group."""
        row = self.conn.execute(
            """
            SELECT id, group_id, user_id, role, joined_at
            FROM group_members
            WHERE group_id = ? AND user_id = ?
            """,
            (group_id, user_id),
        ).fetchone()
        return _row_to_membership(row) if row else None

    def create_membership(
        self, group_id: int, user_id: int, role: Role = Role.MEMBER
    ) -> Membership:
        """
        Add a user to a group.

        Idempotent: an existing membership is returned unchanged.
        """
        with self._transaction("create membership") as cursor:
            cursor.execute(
                """
                INSERT INTO group_members (group_id, user_id, role, joined_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(group_id, user_id) DO NOTHING
                """,
                (group_id, user_id, role.value, datetime.now().isoformat()),
            )
        membership = self.get_membership(group_id, user_id)
        if membership is None:
            raise PersistenceError(
                f"Membership of user {user_id} in group {group_id} was not saved"
            )
        return membership

    def list_members(self, group_id: int) -> list[Member]:
        """Get group members in join order (the allocation order)."""
        rows = self.conn.execute(
            """
            SELECT u.id, u.email, u.name, gm.role
            FROM group_members gm
            JOIN users u ON u.id = gm.user_id
            WHERE gm.group_id = ?
            ORDER BY gm.id ASC
            """,
            (group_id,),
        )
        return [
            Member(
                id=row["id"],
                display_name=row["name"] or row["email"],
                email=row["email"],
                role=Role(row["role"]),
            )
            for row in rows
        ]

    # ========================================================================
    # Expense operations
    # ========================================================================

    def create_expense_with_shares(self, expense: Expense, shares: Sequence[Share]) -> int:
        """Save an expense and all of its shares in one transaction."""
        with self._transaction("create expense") as cursor:
            cursor.execute(
                """
                INSERT INTO expenses (
                    group_id, payer_id, title, amount, currency, fx_to_base,
                    amount_in_base, expense_date, note, category_id,
                    category_name_snapshot, split_mode, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    expense.group_id,
                    expense.payer_id,
                    expense.title,
                    str(expense.amount),
                    expense.currency,
                    str(expense.fx_to_base),
                    str(expense.amount_in_base),
                    expense.expense_date.isoformat(),
                    expense.note,
                    expense.category_id,
                    expense.category_name_snapshot,
                    expense.split_mode.value,
                    expense.created_at.isoformat(),
                ),
            )
            expense_id = cursor.lastrowid
            if expense_id is None:
                raise PersistenceError("Failed to insert expense record")
            _insert_shares(cursor, expense_id, shares)
        return expense_id

    def replace_expense_with_shares(self, expense: Expense, shares: Sequence[Share]):
        """Fully replace an expense row and regenerate its shares, atomically."""
        if expense.id is None:
            raise ValueError("Cannot replace an expense without an id")

        with self._transaction("replace expense") as cursor:
            cursor.execute(
                """
                UPDATE expenses SET
                    payer_id = ?, title = ?, amount = ?, currency = ?,
                    fx_to_base = ?, amount_in_base = ?, expense_date = ?,
                    note = ?, category_id = ?, category_name_snapshot = ?,
                    split_mode = ?
                WHERE id = ?
                """,
                (
                    expense.payer_id,
                    expense.title,
                    str(expense.amount),
                    expense.currency,
                    str(expense.fx_to_base),
                    str(expense.amount_in_base),
                    expense.expense_date.isoformat(),
                    expense.note,
                    expense.category_id,
                    expense.category_name_snapshot,
                    expense.split_mode.value,
                    expense.id,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Expense {expense.id} not found")
            cursor.execute(
                "DELETE FROM expense_shares WHERE expense_id = ?", (expense.id,)
            )
            _insert_shares(cursor, expense.id, shares)

    def replace_shares_for_expense(self, expense_id: int, shares: Sequence[Share]):
        """Swap an expense's shares for a new set, atomically."""
        with self._transaction("replace shares") as cursor:
            cursor.execute("SELECT id FROM expenses WHERE id = ?", (expense_id,))
            if cursor.fetchone() is None:
                raise NotFoundError(f"Expense {expense_id} not found")
            cursor.execute(
                "DELETE FROM expense_shares WHERE expense_id = ?", (expense_id,)
            )
            _insert_shares(cursor, expense_id, shares)

    def delete_expense_and_shares(self, expense_id: int):
        """Delete an expense and its shares in one transaction."""
        with self._transaction("delete expense") as cursor:
            cursor.execute(
                "DELETE FROM expense_shares WHERE expense_id = ?", (expense_id,)
            )
            cursor.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Expense {expense_id} not found")

    def get_expense(self, expense_id: int) -> Expense | None:
        """Get an expense with its shares."""
        rows = self.conn.execute(
            f"""
            SELECT {_EXPENSE_COLUMNS}
            FROM expenses e
            LEFT JOIN expense_shares s ON s.expense_id = e.id
            WHERE e.id = ?
            ORDER BY s.id ASC
            """,
            (expense_id,),
        ).fetchall()
        expenses = _rows_to_expenses(rows)
        return expenses[0] if expenses else None

    def list_expenses_with_shares(self, group_id: int) -> list[Expense]:
        """
        Get a group's expenses with shares embedded, newest first.

        Expenses and shares come from one query, so the result is a
        consistent snapshot: never half of one expense's shares.
        """
        rows = self.conn.execute(
            f"""
            SELECT {_EXPENSE_COLUMNS}
            FROM expenses e
            LEFT JOIN expense_shares s ON s.expense_id = e.id
            WHERE e.group_id = ?
            ORDER BY e.expense_date DESC, e.id DESC, s.id ASC
            """,
            (group_id,),
        ).fetchall()
        return _rows_to_expenses(rows)

    def list_personal_expenses(self, owner_id: int) -> list[Expense]:
        """Get a user's personal (non-group) expenses, newest first."""
        rows = self.conn.execute(
            f"""
            SELECT {_EXPENSE_COLUMNS}
            FROM expenses e
            LEFT JOIN expense_shares s ON s.expense_id = e.id
            WHERE e.group_id IS NULL AND e.payer_id = ?
            ORDER BY e.expense_date DESC, e.id DESC, s.id ASC
            """,
            (owner_id,),
        ).fetchall()
        return _rows_to_expenses(rows)

    def count_shares(self, expense_id: int) -> int:
        """Count share rows for an expense."""
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM expense_shares WHERE expense_id = ?",
            (expense_id,),
        ).fetchone()
        return int(row["n"])


# ============================================================================
# Row mapping helpers
# ============================================================================


def _insert_shares(cursor: sqlite3.Cursor, expense_id: int, shares: Sequence[Share]):
    cursor.executemany(
        "INSERT INTO expense_shares (expense_id, member_id, amount) VALUES (?, ?, ?)",
        [(expense_id, share.member_id, str(share.amount)) for share in shares],
    )


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        base_currency=row["base_currency"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        color=row["color"],
        is_active=bool(row["is_active"]),
    )


def _row_to_group(row: sqlite3.Row) -> Group:
    return Group(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        base_currency=row["base_currency"],
        created_by=row["created_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_membership(row: sqlite3.Row) -> Membership:
    return Membership(
        id=row["id"],
        group_id=row["group_id"],
        user_id=row["user_id"],
        role=Role(row["role"]),
        joined_at=datetime.fromisoformat(row["joined_at"]),
    )


def _rows_to_expenses(rows: Sequence[sqlite3.Row]) -> list[Expense]:
    """Group joined expense/share rows into Expenses, keeping row order."""
    expenses: dict[int, Expense] = {}
    for row in rows:
        expense = expenses.get(row["id"])
        if expense is None:
            expense = Expense(
                id=row["id"],
                group_id=row["group_id"],
                payer_id=row["payer_id"],
                title=row["title"],
                amount=Decimal(row["amount"]),
                currency=row["currency"],
                fx_to_base=Decimal(row["fx_to_base"]),
                amount_in_base=Decimal(row["amount_in_base"]),
                expense_date=date.fromisoformat(row["expense_date"]),
                note=row["note"],
                category_id=row["category_id"],
                category_name_snapshot=row["category_name_snapshot"],
                split_mode=SplitMode(row["split_mode"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            expenses[row["id"]] = expense

        if row["share_member_id"] is not None:
            expense.shares.append(
                Share(
                    expense_id=row["id"],
                    member_id=row["share_member_id"],
                    amount=Decimal(row["share_amount"]),
                )
            )
    return list(expenses.values())
