"""Service layer that composes validation, allocation, persistence and balances.

Collaborators are passed in explicitly: the service holds no global database
handle or auth context, and every operation takes the caller's user id.
"""

import logging
import re
from typing import Any

from .balances import compute_balances
from .config import Settings
from .db import Database
from .exceptions import NotFoundError, ValidationError
from .expenses import (
    build_group_expense,
    build_personal_expense,
    validate_expense_input,
)
from .membership import GroupAction, MembershipResolver, normalize_email
from .models import (
    Category,
    Expense,
    ExpenseInput,
    ExpenseResult,
    Group,
    GroupBalances,
    Membership,
    User,
)

logger = logging.getLogger(__name__)


def slugify_name(name: str) -> str:
    """Lower-case, dash-separated slug made of [a-z0-9-]."""
    slug = re.sub(r"\s+", "-", name.lower().strip())
    return re.sub(r"[^a-z0-9-]", "", slug)


class LedgerService:
    """Service for managing groups, expenses and balances."""

    def __init__(self, settings: Settings, database: Database):
        """Initialize the ledger service."""
        self.settings = settings
        self.db = database
        self.members = MembershipResolver(database)

    # ========================================================================
    # Users and categories
    # ========================================================================

    def register_user(
        self, email: str, name: str | None = None, base_currency: str | None = None
    ) -> User:
        """
        Register a user, or return the existing one with this email.

        New users get the default categories.
        """
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required", fields=["email"])

        existing = self.db.get_user_by_email(email)
        if existing:
            return existing

        currency = self._check_currency(base_currency or self.settings.default_base_currency)
        user = self.db.create_user(
            User(email=email, name=(name or "").strip() or None, base_currency=currency)
        )
        if user.id is not None:
            self.db.seed_default_categories(user.id)

        logger.info(f"Registered user {email} (id {user.id})")
        return user

    def add_category(self, user_id: int, name: str, color: str | None = None) -> Category:
        """Create a category for a user."""
        self._require_user(user_id)
        name = name.strip()
        if not name:
            raise ValidationError("Category name is required", fields=["name"])
        return self.db.create_category(Category(user_id=user_id, name=name, color=color))

    def rename_category(self, user_id: int, category_id: int, name: str) -> Category:
        """Rename one of the caller's categories. Existing expenses keep the old name."""
        self._require_category(user_id, category_id)
        name = name.strip()
        if not name:
            raise ValidationError("Category name is required", fields=["name"])

        self.db.rename_category(category_id, name)
        logger.info(f"Renamed category {category_id} to '{name}'")
        return self._require_category(user_id, category_id)

    # ========================================================================
    # Groups
    # ========================================================================

    def create_group(
        self, user_id: int, name: str, base_currency: str | None = None
    ) -> Group:
        """
        Create a group with the caller as ADMIN.

        The base currency defaults to the caller's own base currency.
        """
        user = self._require_user(user_id)
        name = name.strip()
        if not name:
            raise ValidationError("Group name is required", fields=["name"])

        currency = self._check_currency(base_currency or user.base_currency)
        group = self.db.create_group(
            Group(
                name=name,
                slug=self._unique_slug(name),
                base_currency=currency,
                created_by=user_id,
            )
        )

        logger.info(f"Created group '{group.name}' ({group.slug}) for user {user_id}")
        return group

    def _unique_slug(self, name: str) -> str:
        base_slug = slugify_name(name) or "group"
        slug = base_slug
        counter = 1
        while self.db.get_group_by_slug(slug) is not None:
            slug = f"{base_slug}-{counter}"
            counter += 1
        return slug

    def list_groups(self, user_id: int) -> list[Group]:
        """Get the groups the caller belongs to."""
        return self.db.list_groups_for_user(user_id)

    def get_group(self, user_id: int, group_id: int) -> Group:
        """Get a group visible to the caller."""
        self.members.authorize(group_id, user_id, GroupAction.VIEW)
        return self._require_group(group_id)

    def rename_group(self, user_id: int, group_id: int, name: str) -> Group:
        """Rename a group (ADMIN only)."""
        self.members.authorize(group_id, user_id, GroupAction.RENAME_GROUP)

        name = name.strip()
        if not name:
            raise ValidationError("Group name is required", fields=["name"])

        self.db.update_group_name(group_id, name)
        logger.info(f"Renamed group {group_id} to '{name}'")
        return self._require_group(group_id)

    def add_member(
        self, user_id: int, group_id: int, email: str
    ) -> tuple[Membership, bool]:
        """Add an existing user to a group by email (ADMIN only, idempotent)."""
        return self.members.add_member_by_email(group_id, user_id, email)

    # ========================================================================
    # Group expenses
    # ========================================================================

    def add_group_expense(
        self, user_id: int, group_id: int, data: ExpenseInput | dict[str, Any]
    ) -> ExpenseResult:
        """
        Add a group expense paid by the caller.

        Validation happens before anything is written. The expense and its
        shares are saved in one transaction. If a PERCENT or MANUAL split was
        rejected, the EQUAL substitution is returned as result.fallback.
        """
        self.members.authorize(group_id, user_id, GroupAction.ADD_EXPENSE)
        group = self._require_group(group_id)

        validated = validate_expense_input(
            data, self.settings.supported_currencies, default_currency=group.base_currency
        )
        member_ids = [m.id for m in self.members.list_members(group_id)]
        category_name = self._resolve_category_name(user_id, validated.category_id)

        expense, allocation = build_group_expense(
            validated,
            group_id=group_id,
            payer_id=user_id,
            member_ids=member_ids,
            category_name=category_name,
            settings=self.settings,
        )

        expense_id = self.db.create_expense_with_shares(expense, expense.shares)
        saved = self._reload_expense(expense_id)

        logger.info(
            f"Added expense {expense_id} '{saved.title}' to group {group_id}: "
            f"{saved.amount_in_base} {group.base_currency} split {saved.split_mode.value}"
        )
        return ExpenseResult(expense=saved, fallback=allocation.fallback)

    def update_group_expense(
        self,
        user_id: int,
        group_id: int,
        expense_id: int,
        data: ExpenseInput | dict[str, Any],
    ) -> ExpenseResult:
        """
        Fully replace a group expense and regenerate its shares.

        The payer is kept; shares are recomputed over the current members.
        """
        self.members.authorize(group_id, user_id, GroupAction.MODIFY_EXPENSE)
        group = self._require_group(group_id)
        existing = self._require_group_expense(group_id, expense_id)

        validated = validate_expense_input(
            data, self.settings.supported_currencies, default_currency=group.base_currency
        )
        member_ids = [m.id for m in self.members.list_members(group_id)]
        category_name = self._resolve_category_name(user_id, validated.category_id)

        expense, allocation = build_group_expense(
            validated,
            group_id=group_id,
            payer_id=existing.payer_id,
            member_ids=member_ids,
            category_name=category_name,
            settings=self.settings,
        )
        expense.id = expense_id

        self.db.replace_expense_with_shares(expense, expense.shares)

        logger.info(f"Replaced expense {expense_id} in group {group_id}")
        return ExpenseResult(
            expense=self._reload_expense(expense_id), fallback=allocation.fallback
        )

    def delete_group_expense(self, user_id: int, group_id: int, expense_id: int):
        """Delete a group expense together with its shares."""
        self.members.authorize(group_id, user_id, GroupAction.MODIFY_EXPENSE)
        self._require_group_expense(group_id, expense_id)

        share_count = self.db.count_shares(expense_id)
        self.db.delete_expense_and_shares(expense_id)
        logger.info(
            f"Deleted expense {expense_id} and {share_count} shares from group {group_id}"
        )

    def list_group_expenses(self, user_id: int, group_id: int) -> list[Expense]:
        """Get a group's expenses with shares, newest first."""
        self.members.authorize(group_id, user_id, GroupAction.VIEW)
        return self.db.list_expenses_with_shares(group_id)

    def get_group_balances(self, user_id: int, group_id: int) -> GroupBalances:
        """Compute every member's paid, owed and net position, fresh."""
        self.members.authorize(group_id, user_id, GroupAction.VIEW)
        group = self._require_group(group_id)

        members = self.members.list_members(group_id)
        expenses = self.db.list_expenses_with_shares(group_id)

        return compute_balances(
            members,
            expenses,
            group_id=group_id,
            base_currency=group.base_currency,
            settlement_epsilon=self.settings.settlement_epsilon,
        )

    # ========================================================================
    # Personal expenses
    # ========================================================================

    def add_personal_expense(
        self, user_id: int, data: ExpenseInput | dict[str, Any]
    ) -> Expense:
        """Record a personal expense in the caller's base currency."""
        user = self._require_user(user_id)
        validated = validate_expense_input(
            data, self.settings.supported_currencies, default_currency=user.base_currency
        )
        expense = build_personal_expense(
            validated, user_id, self._resolve_category_name(user_id, validated.category_id)
        )
        expense_id = self.db.create_expense_with_shares(expense, [])
        logger.info(f"Added personal expense {expense_id} for user {user_id}")
        return self._reload_expense(expense_id)

    def update_personal_expense(
        self, user_id: int, expense_id: int, data: ExpenseInput | dict[str, Any]
    ) -> Expense:
        """Fully replace one of the caller's personal expenses."""
        user = self._require_user(user_id)
        self._require_personal_expense(user_id, expense_id)

        validated = validate_expense_input(
            data, self.settings.supported_currencies, default_currency=user.base_currency
        )
        expense = build_personal_expense(
            validated, user_id, self._resolve_category_name(user_id, validated.category_id)
        )
        expense.id = expense_id
        self.db.replace_expense_with_shares(expense, [])
        return self._reload_expense(expense_id)

    def delete_personal_expense(self, user_id: int, expense_id: int):
        """Delete one of the caller's personal expenses."""
        self._require_personal_expense(user_id, expense_id)
        self.db.delete_expense_and_shares(expense_id)
        logger.info(f"Deleted personal expense {expense_id} for user {user_id}")

    def list_personal_expenses(self, user_id: int) -> list[Expense]:
        """Get the caller's personal expenses, newest first."""
        return self.db.list_personal_expenses(user_id)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _check_currency(self, currency: str) -> str:
        currency = currency.strip().upper()
        if currency not in {c.upper() for c in self.settings.supported_currencies}:
            raise ValidationError(
                f"Unsupported currency {currency}", fields=["base_currency"]
            )
        return currency

    def _require_user(self, user_id: int) -> User:
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def _require_group(self, group_id: int) -> Group:
        group = self.db.get_group(group_id)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found")
        return group

    def _require_group_expense(self, group_id: int, expense_id: int) -> Expense:
        expense = self.db.get_expense(expense_id)
        if expense is None or expense.group_id != group_id:
            raise NotFoundError(f"Expense {expense_id} not found in group {group_id}")
        return expense

    def _require_personal_expense(self, user_id: int, expense_id: int) -> Expense:
        expense = self.db.get_expense(expense_id)
        if expense is None or expense.group_id is not None or expense.payer_id != user_id:
            raise NotFoundError(f"Expense {expense_id} not found")
        return expense

    def _reload_expense(self, expense_id: int) -> Expense:
        expense = self.db.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense {expense_id} not found")
        return expense

    def _require_category(self, user_id: int, category_id: int) -> Category:
        category = self.db.get_category(category_id)
        if category is None or category.user_id != user_id:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    def _resolve_category_name(self, user_id: int, category_id: int | None) -> str | None:
        """Snapshot the current name of one of the caller's categories."""
        if category_id is None:
            return None
        category = self.db.get_category(category_id)
        if category is None or category.user_id != user_id:
            raise ValidationError(
                f"Unknown category {category_id}", fields=["category_id"]
            )
        return category.name
