"""Core allocation logic for splitting an expense's base amount into member shares."""

import logging
from collections.abc import Mapping, Sequence
from decimal import ROUND_HALF_EVEN, Decimal, DecimalException

from .config import Settings
from .exceptions import AllocationFallbackWarning, ValidationError
from .models import AllocationResult, SplitMode, SplitRequest

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

PERCENT_WEIGHT_EPSILON = Decimal("0.0001")
MANUAL_MIN_TOLERANCE = Decimal("0.05")
MANUAL_RELATIVE_TOLERANCE = Decimal("0.01")


def _as_decimal(value: Decimal | int | float | str) -> Decimal:
    """Convert to Decimal, going through str for floats to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round2(value: Decimal | int | float | str) -> Decimal:
    """
    Round to 2 decimal places.

    Uses ROUND_HALF_EVEN everywhere: amount_in_base and every split policy
    go through this function or through to_cents.

    Raises:
        ValidationError: If the value is not a number or too large to hold cents
    """
    try:
        return _as_decimal(value).quantize(CENT, rounding=ROUND_HALF_EVEN)
    except DecimalException as e:
        raise ValidationError(f"Amount {value} is out of range") from e


def to_cents(amount: Decimal | int | float | str) -> int:
    """
    Convert a currency amount to integer cents.

    Args:
        amount: Amount as Decimal (or anything Decimal accepts)

    Returns:
        Amount in cents (integer)
    """
    try:
        cents = _as_decimal(amount) * 100
        return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))
    except DecimalException as e:
        raise ValidationError(f"Amount {amount} is out of range") from e


def from_cents(cents: int) -> Decimal:
    """Convert integer cents back to a 2-decimal amount."""
    return Decimal(cents).scaleb(-2)


def _check_members(member_ids: Sequence[int]) -> None:
    if not member_ids:
        raise ValidationError(
            "Cannot split an expense between zero members", fields=["members"]
        )
    if len(set(member_ids)) != len(member_ids):
        raise ValidationError("Duplicate member in split", fields=["members"])


def _positive_cents(total: Decimal | int | float | str) -> int:
    total_cents = to_cents(total)
    if total_cents <= 0:
        raise ValidationError(
            f"Amount to split must be positive, got {total}", fields=["amount"]
        )
    return total_cents


def _equal_cents(total_cents: int, count: int) -> list[int]:
    base, remainder = divmod(total_cents, count)
    # First `remainder` members absorb one extra cent each
    return [base + 1 if i < remainder else base for i in range(count)]


def allocate_equal(
    total: Decimal, member_ids: Sequence[int]
) -> AllocationResult:
    """
    Split total equally, working in integer cents.

    The first `remainder` members (in membership order) get one extra cent,
    so the shares always add back up to total exactly.

    Raises:
        ValidationError: If there are no members or total is not positive
    """
    _check_members(member_ids)
    total_cents = _positive_cents(total)

    shares = {
        member_id: from_cents(cents)
        for member_id, cents in zip(
            member_ids, _equal_cents(total_cents, len(member_ids)), strict=True
        )
    }
    return AllocationResult(
        shares=shares,
        requested_mode=SplitMode.EQUAL,
        applied_mode=SplitMode.EQUAL,
    )


def _fallback_to_equal(
    total: Decimal,
    member_ids: Sequence[int],
    requested_mode: SplitMode,
    reason: str,
) -> AllocationResult:
    warning = AllocationFallbackWarning(requested_mode.value, reason)
    logger.warning(str(warning))

    result = allocate_equal(total, member_ids)
    result.requested_mode = requested_mode
    result.fallback = warning
    return result


def allocate_percent(
    total: Decimal,
    member_ids: Sequence[int],
    weights: Mapping[int, Decimal],
    epsilon: Decimal = PERCENT_WEIGHT_EPSILON,
) -> AllocationResult:
    """
    Split total proportionally to per-member weights.

    Weights are normalised, so they need not add up to 100. Members without a
    weight get 0, and negative weights count as 0. Each member first receives
    the floor of their exact cent quota; the leftover cents go to the members
    with the largest fractional remainders (ties: larger weight, then
    membership order). The shares always add back up to total exactly.

    Falls back to EQUAL if the total weight is not above epsilon.

    Raises:
        ValidationError: If there are no members or total is not positive
    """
    _check_members(member_ids)
    total_cents = _positive_cents(total)

    cleaned = [max(_as_decimal(weights.get(m, 0)), Decimal("0")) for m in member_ids]
    total_weight = sum(cleaned, Decimal("0"))

    if total_weight <= epsilon:
        return _fallback_to_equal(
            total,
            member_ids,
            SplitMode.PERCENT,
            f"total weight {total_weight} is not above {epsilon}",
        )

    quotas = [total_cents * weight / total_weight for weight in cleaned]
    cents = [int(quota) for quota in quotas]  # quotas are >= 0, so int() floors

    leftover = total_cents - sum(cents)
    order = sorted(
        range(len(member_ids)),
        key=lambda i: (-(quotas[i] - cents[i]), -cleaned[i], i),
    )
    for i in order[:leftover]:
        cents[i] += 1

    if leftover:
        logger.debug(f"Distributed {leftover} leftover cent(s) in percent split")

    return AllocationResult(
        shares={m: from_cents(c) for m, c in zip(member_ids, cents, strict=True)},
        requested_mode=SplitMode.PERCENT,
        applied_mode=SplitMode.PERCENT,
    )


def manual_tolerance(
    total: Decimal,
    min_tolerance: Decimal = MANUAL_MIN_TOLERANCE,
    relative_tolerance: Decimal = MANUAL_RELATIVE_TOLERANCE,
) -> Decimal:
    """Allowed gap between the proposed amounts and the total."""
    return max(min_tolerance, relative_tolerance * abs(_as_decimal(total)))


def allocate_manual(
    total: Decimal,
    member_ids: Sequence[int],
    amounts: Mapping[int, Decimal],
    min_tolerance: Decimal = MANUAL_MIN_TOLERANCE,
    relative_tolerance: Decimal = MANUAL_RELATIVE_TOLERANCE,
    absorb_residual: bool = True,
) -> AllocationResult:
    """
    Use caller-proposed amounts per member.

    Steps:
    1. Round each proposed amount to 2 decimals (missing members propose 0)
    2. Reject if any amount is negative or the proposed sum is not positive
    3. Reject if |sum - total| exceeds max(min_tolerance, relative * |total|)
    4. If absorb_residual, move the remaining gap onto the largest share so
       the shares add up to total exactly; otherwise keep amounts as proposed

    Every rejection falls back to EQUAL and is reported on the result.

    Raises:
        ValidationError: If there are no members or total is not positive
    """
    _check_members(member_ids)
    _positive_cents(total)
    total = _as_decimal(total)

    proposed = {m: round2(amounts.get(m, 0)) for m in member_ids}
    proposed_sum = sum(proposed.values(), Decimal("0"))

    negative = [m for m, amount in proposed.items() if amount < 0]
    if negative:
        return _fallback_to_equal(
            total,
            member_ids,
            SplitMode.MANUAL,
            f"negative amount proposed for member(s) {negative}",
        )

    if proposed_sum <= 0:
        return _fallback_to_equal(
            total, member_ids, SplitMode.MANUAL, "proposed amounts add up to zero"
        )

    tolerance = manual_tolerance(total, min_tolerance, relative_tolerance)
    residual = round2(total) - proposed_sum
    if abs(residual) > tolerance:
        return _fallback_to_equal(
            total,
            member_ids,
            SplitMode.MANUAL,
            f"proposed amounts add up to {proposed_sum}, expected {round2(total)} "
            f"(tolerance {tolerance})",
        )

    if residual != 0 and absorb_residual:
        # Residual goes to the largest share
        largest = max(member_ids, key=lambda m: proposed[m])
        adjusted = proposed[largest] + residual
        if adjusted < 0:
            return _fallback_to_equal(
                total,
                member_ids,
                SplitMode.MANUAL,
                f"residual {residual} cannot be absorbed by the largest share",
            )
        proposed[largest] = adjusted

        logger.info(
            f"Applied manual split adjustment: {residual} to member {largest}"
        )

    return AllocationResult(
        shares=proposed,
        requested_mode=SplitMode.MANUAL,
        applied_mode=SplitMode.MANUAL,
    )


def allocate(
    total: Decimal,
    member_ids: Sequence[int],
    request: SplitRequest,
    settings: Settings | None = None,
) -> AllocationResult:
    """
    Allocate total into per-member shares according to the request's mode.

    Args:
        total: Positive base-currency total, already rounded to 2 decimals
        member_ids: Participants in stable membership order
        request: Split mode and per-member weights or amounts
        settings: Optional thresholds; module defaults are used otherwise

    Returns:
        AllocationResult with shares in membership order
    """
    if request.split_mode == SplitMode.PERCENT:
        epsilon = settings.percent_weight_epsilon if settings else PERCENT_WEIGHT_EPSILON
        return allocate_percent(total, member_ids, request.percent_by_member, epsilon)

    if request.split_mode == SplitMode.MANUAL:
        if settings:
            return allocate_manual(
                total,
                member_ids,
                request.manual_by_member,
                min_tolerance=settings.manual_min_tolerance,
                relative_tolerance=settings.manual_relative_tolerance,
                absorb_residual=settings.manual_absorb_residual,
            )
        return allocate_manual(total, member_ids, request.manual_by_member)

    return allocate_equal(total, member_ids)
