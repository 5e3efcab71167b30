"""Validate raw expense input and normalize it into Expense records."""

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal, DecimalException
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .allocation import allocate, round2
from .config import DEFAULT_CURRENCIES, Settings
from .exceptions import ValidationError
from .models import AllocationResult, Expense, ExpenseInput, SplitMode

logger = logging.getLogger(__name__)


def compute_amount_in_base(amount: Decimal, fx_to_base: Decimal) -> Decimal:
    """Base-currency amount, rounded with the same rule as shares."""
    try:
        return round2(amount * fx_to_base)
    except (DecimalException, ValidationError) as e:
        raise ValidationError(
            f"Amount {amount} at rate {fx_to_base} is out of range", fields=["amount"]
        ) from e


def validate_expense_input(
    raw: ExpenseInput | dict[str, Any],
    supported_currencies: Iterable[str] = DEFAULT_CURRENCIES,
    default_currency: str | None = None,
) -> ExpenseInput:
    """
    Validate and normalize raw expense input.

    Args:
        raw: Submitted fields, or an already-built ExpenseInput
        supported_currencies: Accepted currency codes
        default_currency: Used when no currency was submitted

    Returns:
        Normalized ExpenseInput with a currency filled in

    Raises:
        ValidationError: With the offending field names
    """
    try:
        data = ExpenseInput.model_validate(raw)
    except PydanticValidationError as e:
        fields = sorted(
            {".".join(str(part) for part in err["loc"]) for err in e.errors()}
        )
        raise ValidationError(
            f"Invalid expense: {', '.join(fields)}", fields=fields
        ) from e

    currency = data.currency or (default_currency.upper() if default_currency else None)
    if currency is None:
        raise ValidationError("Currency is required", fields=["currency"])

    supported = {code.upper() for code in supported_currencies}
    if currency not in supported:
        raise ValidationError(
            f"Unsupported currency {currency}. Choose one of: "
            f"{', '.join(sorted(supported))}",
            fields=["currency"],
        )

    if currency != data.currency:
        data = data.model_copy(update={"currency": currency})
    return data


def build_group_expense(
    data: ExpenseInput,
    group_id: int,
    payer_id: int,
    member_ids: Sequence[int],
    category_name: str | None = None,
    settings: Settings | None = None,
) -> tuple[Expense, AllocationResult]:
    """
    Build a group Expense and its Shares from validated input.

    The shares are produced over amount_in_base, in membership order.
    split_mode records the mode that was actually applied, so a rejected
    PERCENT or MANUAL split is stored as EQUAL.

    Raises:
        ValidationError: If the payer is not a member or there are no members
    """
    if payer_id not in member_ids:
        raise ValidationError(
            f"Payer {payer_id} is not a member of group {group_id}",
            fields=["payer_id"],
        )

    amount_in_base = compute_amount_in_base(data.amount, data.fx_to_base)
    allocation = allocate(amount_in_base, member_ids, data.split, settings)

    expense = Expense(
        group_id=group_id,
        payer_id=payer_id,
        title=data.title,
        amount=data.amount,
        currency=data.currency or "",
        fx_to_base=data.fx_to_base,
        amount_in_base=amount_in_base,
        expense_date=data.expense_date,
        note=data.note,
        category_id=data.category_id,
        category_name_snapshot=category_name,
        split_mode=allocation.applied_mode,
        shares=allocation.to_shares(),
    )

    logger.debug(
        f"Built expense '{expense.title}': {expense.amount} {expense.currency} "
        f"-> {amount_in_base} base, {len(expense.shares)} shares"
    )

    return expense, allocation


def build_personal_expense(
    data: ExpenseInput,
    owner_id: int,
    category_name: str | None = None,
) -> Expense:
    """Build a personal (non-group) Expense. Personal expenses carry no shares."""
    return Expense(
        group_id=None,
        payer_id=owner_id,
        title=data.title,
        amount=data.amount,
        currency=data.currency or "",
        fx_to_base=data.fx_to_base,
        amount_in_base=compute_amount_in_base(data.amount, data.fx_to_base),
        expense_date=data.expense_date,
        note=data.note,
        category_id=data.category_id,
        category_name_snapshot=category_name,
        split_mode=SplitMode.EQUAL,
    )
