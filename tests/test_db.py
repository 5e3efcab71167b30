"""Tests for SQLite persistence and transactional guarantees."""

from datetime import date
from decimal import Decimal

import pytest

from monee_split.db import DEFAULT_CATEGORIES, Database
from monee_split.exceptions import NotFoundError, PersistenceError
from monee_split.models import Expense, Group, Role, Share, SplitMode, User


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    db_path = tmp_path / "test.db"
    db = Database(db_path)
    yield db
    db.close()


@pytest.fixture
def users(db):
    """Three registered users: alice, bob, carol."""
    return [
        db.create_user(User(email=f"{name}@example.com", name=name.title()))
        for name in ("alice", "bob", "carol")
    ]


@pytest.fixture
def group(db, users):
    """A group created by alice, with bob and carol as members."""
    group = db.create_group(
        Group(name="Trip", slug="trip", base_currency="USD", created_by=users[0].id)
    )
    db.create_membership(group.id, users[1].id)
    db.create_membership(group.id, users[2].id)
    return group


def make_expense(group_id: int, payer_id: int, amount: str = "30.00") -> Expense:
    """Create an unsaved group expense."""
    return Expense(
        group_id=group_id,
        payer_id=payer_id,
        title="Dinner",
        amount=Decimal(amount),
        currency="USD",
        fx_to_base=Decimal("1"),
        amount_in_base=Decimal(amount),
        expense_date=date(2025, 1, 15),
        split_mode=SplitMode.EQUAL,
    )


def count_rows(db: Database, table: str) -> int:
    return db.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


class TestGroupsAndMembers:
    """Tests for group and membership operations."""

    def test_creator_is_admin(self, db, users, group):
        membership = db.get_membership(group.id, users[0].id)

        assert membership is not None
        assert membership.role == Role.ADMIN

    def test_members_listed_in_join_order(self, db, users, group):
        members = db.list_members(group.id)

        assert [m.id for m in members] == [u.id for u in users]
        assert [m.display_name for m in members] == ["Alice", "Bob", "Carol"]
        assert members[1].role == Role.MEMBER

    def test_create_membership_is_idempotent(self, db, users, group):
        first = db.get_membership(group.id, users[1].id)
        again = db.create_membership(group.id, users[1].id, Role.ADMIN)

        assert again.id == first.id
        assert again.role == Role.MEMBER
        assert count_rows(db, "group_members") == 3

    def test_update_group_name(self, db, group):
        db.update_group_name(group.id, "Tokyo")

        assert db.get_group(group.id).name == "Tokyo"

    def test_update_missing_group(self, db):
        with pytest.raises(NotFoundError):
            db.update_group_name(404, "Nope")

    def test_duplicate_slug_is_a_persistence_error(self, db, users, group):
        with pytest.raises(PersistenceError):
            db.create_group(
                Group(name="Trip", slug="trip", base_currency="USD", created_by=users[0].id)
            )

    def test_groups_for_user(self, db, users, group):
        assert [g.id for g in db.list_groups_for_user(users[2].id)] == [group.id]


class TestExpenseTransactions:
    """Tests for atomic expense and share writes."""

    def test_create_and_read_back(self, db, users, group):
        shares = [
            Share(member_id=u.id, amount=Decimal("10.00")) for u in users
        ]
        expense_id = db.create_expense_with_shares(make_expense(group.id, users[0].id), shares)

        saved = db.get_expense(expense_id)

        assert saved.amount_in_base == Decimal("30.00")
        assert [s.member_id for s in saved.shares] == [u.id for u in users]
        assert saved.shares_total == Decimal("30.00")

    def test_failed_share_insert_leaves_no_expense(self, db, users, group):
        """A duplicate share aborts the whole transaction."""
        shares = [
            Share(member_id=users[0].id, amount=Decimal("15.00")),
            Share(member_id=users[0].id, amount=Decimal("15.00")),
        ]

        with pytest.raises(PersistenceError):
            db.create_expense_with_shares(make_expense(group.id, users[0].id), shares)

        assert count_rows(db, "expenses") == 0
        assert count_rows(db, "expense_shares") == 0

    def test_delete_leaves_no_orphaned_shares(self, db, users, group):
        shares = [Share(member_id=u.id, amount=Decimal("10.00")) for u in users]
        expense_id = db.create_expense_with_shares(make_expense(group.id, users[0].id), shares)

        db.delete_expense_and_shares(expense_id)

        assert db.get_expense(expense_id) is None
        assert db.count_shares(expense_id) == 0
        assert count_rows(db, "expense_shares") == 0

    def test_delete_missing_expense(self, db):
        with pytest.raises(NotFoundError):
            db.delete_expense_and_shares(404)

    def test_replace_shares(self, db, users, group):
        shares = [Share(member_id=u.id, amount=Decimal("10.00")) for u in users]
        expense_id = db.create_expense_with_shares(make_expense(group.id, users[0].id), shares)

        db.replace_shares_for_expense(
            expense_id, [Share(member_id=users[0].id, amount=Decimal("30.00"))]
        )

        saved = db.get_expense(expense_id)
        assert [(s.member_id, s.amount) for s in saved.shares] == [
            (users[0].id, Decimal("30.00"))
        ]

    def test_failed_replace_keeps_previous_state(self, db, users, group):
        shares = [Share(member_id=u.id, amount=Decimal("10.00")) for u in users]
        expense = make_expense(group.id, users[0].id)
        expense_id = db.create_expense_with_shares(expense, shares)

        replacement = expense.model_copy(
            update={"id": expense_id, "title": "Changed", "amount_in_base": Decimal("20.00")}
        )
        bad_shares = [
            Share(member_id=users[1].id, amount=Decimal("10.00")),
            Share(member_id=users[1].id, amount=Decimal("10.00")),
        ]

        with pytest.raises(PersistenceError):
            db.replace_expense_with_shares(replacement, bad_shares)

        saved = db.get_expense(expense_id)
        assert saved.title == "Dinner"
        assert saved.amount_in_base == Decimal("30.00")
        assert len(saved.shares) == 3

    def test_replace_missing_expense(self, db, users, group):
        expense = make_expense(group.id, users[0].id).model_copy(update={"id": 404})

        with pytest.raises(NotFoundError):
            db.replace_expense_with_shares(expense, [])

    def test_list_expenses_embeds_shares_newest_first(self, db, users, group):
        older = make_expense(group.id, users[0].id)
        newer = make_expense(group.id, users[1].id, "9.00").model_copy(
            update={"expense_date": date(2025, 2, 1)}
        )
        db.create_expense_with_shares(
            older, [Share(member_id=u.id, amount=Decimal("10.00")) for u in users]
        )
        db.create_expense_with_shares(
            newer, [Share(member_id=u.id, amount=Decimal("3.00")) for u in users]
        )
        db.create_expense_with_shares(
            make_expense(None, users[0].id), []
        )  # personal expenses are not listed

        expenses = db.list_expenses_with_shares(group.id)

        assert [e.amount_in_base for e in expenses] == [Decimal("9.00"), Decimal("30.00")]
        assert all(len(e.shares) == 3 for e in expenses)


class TestCategories:
    """Tests for category operations."""

    def test_seed_default_categories_once(self, db, users):
        first = db.seed_default_categories(users[0].id)
        second = db.seed_default_categories(users[0].id)

        assert len(first) == len(DEFAULT_CATEGORIES)
        assert [c.id for c in second] == [c.id for c in first]

    def test_categories_sorted_by_name(self, db, users):
        db.seed_default_categories(users[0].id)

        names = [c.name for c in db.list_categories(users[0].id)]

        assert names == sorted(names)

    def test_rename_category(self, db, users):
        category = db.seed_default_categories(users[0].id)[0]

        db.rename_category(category.id, "Renamed")

        assert db.get_category(category.id).name == "Renamed"

    def test_rename_missing_category(self, db):
        with pytest.raises(NotFoundError):
            db.rename_category(404, "Nope")
