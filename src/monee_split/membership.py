"""Group membership listing and authorization."""

import logging
from enum import Enum

from .db import Database
from .exceptions import AuthorizationError, NotFoundError, ValidationError
from .models import Member, Membership, Role

logger = logging.getLogger(__name__)


class GroupAction(str, Enum):
    """Operations gated by group membership."""

    VIEW = "view group"
    ADD_EXPENSE = "add expenses"
    MODIFY_EXPENSE = "modify expenses"
    RENAME_GROUP = "rename the group"
    ADD_MEMBER = "add members"


_MEMBER_ACTIONS = frozenset(
    {GroupAction.VIEW, GroupAction.ADD_EXPENSE, GroupAction.MODIFY_EXPENSE}
)

ROLE_PERMISSIONS: dict[Role, frozenset[GroupAction]] = {
    Role.ADMIN: _MEMBER_ACTIONS | {GroupAction.RENAME_GROUP, GroupAction.ADD_MEMBER},
    Role.MEMBER: _MEMBER_ACTIONS,
}

_missing_roles = set(Role) - set(ROLE_PERMISSIONS)
if _missing_roles:
    raise RuntimeError(f"Roles without permissions: {sorted(_missing_roles)}")


def is_allowed(role: Role, action: GroupAction) -> bool:
    """Check whether a role may perform an action."""
    return action in ROLE_PERMISSIONS[role]


def normalize_email(email: str) -> str:
    """Emails are matched trimmed and lower-cased."""
    return email.strip().lower()


class MembershipResolver:
    """Resolves who may act on a group, and who takes part in its splits."""

    def __init__(self, database: Database):
        """Initialize the resolver."""
        self.db = database

    def require_membership(self, group_id: int, user_id: int) -> Membership:
        """
        Get the caller's membership in a group.

        A group the caller does not belong to is reported as not found, since
        the caller has no visibility into it.

        Raises:
            NotFoundError: If the group does not exist or the caller is not a member
        """
        membership = self.db.get_membership(group_id, user_id)
        if membership is None:
            raise NotFoundError(f"Group {group_id} not found")
        return membership

    def authorize(self, group_id: int, user_id: int, action: GroupAction) -> Membership:
        """
        Check that the caller may perform an action in a group.

        Raises:
            NotFoundError: If the caller is not a member
            AuthorizationError: If the caller's role does not allow the action
        """
        membership = self.require_membership(group_id, user_id)
        if not is_allowed(membership.role, action):
            logger.info(
                f"User {user_id} ({membership.role.value}) denied: "
                f"{action.value} in group {group_id}"
            )
            raise AuthorizationError(action.value)
        return membership

    def list_members(self, group_id: int) -> list[Member]:
        """Get group members in stable membership order."""
        return self.db.list_members(group_id)

    def add_member_by_email(
        self, group_id: int, actor_id: int, email: str
    ) -> tuple[Membership, bool]:
        """
        Add an existing user to a group by email (ADMIN only).

        Adding someone who is already a member is a no-op.

        Returns:
            Tuple of (membership, created)

        Raises:
            ValidationError: If the email is empty
            NotFoundError: If no user has this email
            AuthorizationError: If the actor is not an ADMIN
        """
        self.authorize(group_id, actor_id, GroupAction.ADD_MEMBER)

        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required", fields=["email"])

        user = self.db.get_user_by_email(email)
        if user is None or user.id is None:
            raise NotFoundError(f"No user with email {email}")

        existing = self.db.get_membership(group_id, user.id)
        if existing:
            logger.debug(f"{email} is already a member of group {group_id}")
            return existing, False

        membership = self.db.create_membership(group_id, user.id, Role.MEMBER)
        logger.info(f"Added {email} to group {group_id}")
        return membership, True
