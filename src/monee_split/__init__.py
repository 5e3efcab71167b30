"""Monee Split - Split shared expenses across currencies and track who owes whom."""

__version__ = "0.1.0"

from .allocation import allocate, allocate_equal, allocate_manual, allocate_percent, round2
from .balances import compute_balances
from .config import Settings, load_settings
from .db import Database
from .exceptions import (
    AllocationFallbackWarning,
    AuthorizationError,
    MoneeSplitError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .models import (
    Expense,
    ExpenseInput,
    GroupBalances,
    Role,
    Share,
    SplitMode,
    SplitRequest,
)
from .service import LedgerService
from .settlement import classify_net

__all__ = [
    "allocate",
    "allocate_equal",
    "allocate_manual",
    "allocate_percent",
    "round2",
    "compute_balances",
    "Settings",
    "load_settings",
    "Database",
    "AllocationFallbackWarning",
    "AuthorizationError",
    "MoneeSplitError",
    "NotFoundError",
    "PersistenceError",
    "ValidationError",
    "Expense",
    "ExpenseInput",
    "GroupBalances",
    "Role",
    "Share",
    "SplitMode",
    "SplitRequest",
    "LedgerService",
    "classify_net",
]
