"""Pydantic domain models for Monee Split."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .exceptions import AllocationFallbackWarning

# ============================================================================
# Enums
# ============================================================================


class SplitMode(str, Enum):
    """How an expense's base amount is divided between group members."""

    EQUAL = "EQUAL"
    PERCENT = "PERCENT"
    MANUAL = "MANUAL"


class Role(str, Enum):
    """Membership role inside a group."""

    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class SettlementState(str, Enum):
    """Actionable status derived from a member's net balance."""

    SETTLED = "SETTLED"
    OWES = "OWES"
    SHOULD_RECEIVE = "SHOULD_RECEIVE"


# ============================================================================
# Users, Categories and Groups
# ============================================================================


class User(BaseModel):
    """A person known to the ledger. Identity is supplied by the caller."""

    id: int | None = None
    email: str
    name: str | None = None
    base_currency: str = "USD"
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def display_name(self) -> str:
        return self.name or self.email


class Category(BaseModel):
    """A user's spending category."""

    id: int | None = None
    user_id: int
    name: str
    color: str | None = None
    is_active: bool = True


class Group(BaseModel):
    """A named set of members sharing a base currency."""

    id: int | None = None
    name: str
    slug: str
    base_currency: str
    created_by: int
    created_at: datetime = Field(default_factory=datetime.now)


class Membership(BaseModel):
    """A user's membership in a group."""

    id: int | None = None
    group_id: int
    user_id: int
    role: Role = Role.MEMBER
    joined_at: datetime = Field(default_factory=datetime.now)


class Member(BaseModel):
    """A participant in a group split, in membership order."""

    id: int  # user id
    display_name: str
    email: str | None = None
    role: Role = Role.MEMBER


# ============================================================================
# Expenses and Shares
# ============================================================================


class SplitRequest(BaseModel):
    """
    Strongly typed split instructions built by the presentation layer.

    percent_by_member holds weights (not required to sum to 100) and is only
    read for PERCENT. manual_by_member holds base-currency amounts and is only
    read for MANUAL. Members absent from a mapping count as zero.
    """

    split_mode: SplitMode = SplitMode.EQUAL
    percent_by_member: dict[int, Decimal] = Field(default_factory=dict)
    manual_by_member: dict[int, Decimal] = Field(default_factory=dict)


class ExpenseInput(BaseModel):
    """Raw expense fields as submitted by a user."""

    title: str
    amount: Decimal = Field(gt=0)
    currency: str | None = None  # defaults to the group's or user's base currency
    fx_to_base: Decimal = Field(default=Decimal("1"), gt=0)
    expense_date: date = Field(default_factory=date.today)
    note: str | None = None
    category_id: int | None = None
    split: SplitRequest = Field(default_factory=SplitRequest)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        """Titles are trimmed and must not be blank."""
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip().upper()

    @field_validator("note")
    @classmethod
    def empty_note_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class Share(BaseModel):
    """One member's allocated portion of an expense's base amount."""

    expense_id: int | None = None
    member_id: int
    amount: Decimal


class Expense(BaseModel):
    """
    A single spending event.

    amount_in_base is always derived from amount and fx_to_base. Group
    expenses carry one Share per member; personal expenses (group_id is None)
    carry none. payer_id is the owner for personal expenses.
    """

    id: int | None = None
    group_id: int | None = None
    payer_id: int
    title: str
    amount: Decimal
    currency: str
    fx_to_base: Decimal
    amount_in_base: Decimal
    expense_date: date
    note: str | None = None
    category_id: int | None = None
    category_name_snapshot: str | None = None
    split_mode: SplitMode = SplitMode.EQUAL
    shares: list[Share] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def shares_total(self) -> Decimal:
        return sum((share.amount for share in self.shares), Decimal("0"))


# ============================================================================
# Allocation and Balance Results
# ============================================================================


class AllocationResult(BaseModel):
    """Shares produced for one expense, and whether a fallback happened."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    shares: dict[int, Decimal]  # member id -> amount, in membership order
    requested_mode: SplitMode
    applied_mode: SplitMode
    fallback: AllocationFallbackWarning | None = None

    @property
    def fell_back(self) -> bool:
        return self.fallback is not None

    @property
    def total(self) -> Decimal:
        return sum(self.shares.values(), Decimal("0"))

    def to_shares(self, expense_id: int | None = None) -> list[Share]:
        """Convert to Share records in membership order."""
        return [
            Share(expense_id=expense_id, member_id=member_id, amount=amount)
            for member_id, amount in self.shares.items()
        ]


class ExpenseResult(BaseModel):
    """A persisted group expense plus any allocation fallback to report."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    expense: Expense
    fallback: AllocationFallbackWarning | None = None


class Settlement(BaseModel):
    """Tri-state settlement status. amount is always >= 0."""

    state: SettlementState
    amount: Decimal = Decimal("0")


class MemberBalance(BaseModel):
    """Per-member position within a group (derived, never stored)."""

    member_id: int
    display_name: str
    paid: Decimal
    owed: Decimal
    net: Decimal
    settlement: Settlement


class GroupBalances(BaseModel):
    """Aggregate balance view of a group."""

    group_id: int | None = None
    base_currency: str | None = None
    balances: list[MemberBalance]
    total_group_amount: Decimal
    fair_share_per_person: Decimal

    @property
    def net_total(self) -> Decimal:
        return sum((b.net for b in self.balances), Decimal("0"))

    def for_member(self, member_id: int) -> MemberBalance:
        """Get the balance row for a member."""
        for balance in self.balances:
            if balance.member_id == member_id:
                return balance
        raise ValueError(f"Member {member_id} not in group balances")
