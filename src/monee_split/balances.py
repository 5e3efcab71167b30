"""Fold a group's expenses and shares into per-member net balances."""

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal

from .allocation import allocate_equal
from .models import Expense, GroupBalances, Member, MemberBalance
from .settlement import SETTLEMENT_EPSILON, classify_net

logger = logging.getLogger(__name__)


def compute_balances(
    members: Sequence[Member],
    expenses: Iterable[Expense],
    group_id: int | None = None,
    base_currency: str | None = None,
    settlement_epsilon: Decimal = SETTLEMENT_EPSILON,
) -> GroupBalances:
    """
    Compute paid, owed and net for every member of a group.

    This is a pure function: nothing is read or written besides its inputs.

    Steps:
    1. Start every member at paid = 0, owed = 0
    2. Credit each expense's amount_in_base to its payer
    3. Debit each share to its member
    4. For an expense with no shares (legacy data), split it equally across
       all current members on the fly; the split is not persisted
    5. net = paid - owed, classified into a settlement state

    Args:
        members: Current group members, in membership order
        expenses: Group expenses with their shares embedded

    Returns:
        GroupBalances with one row per member, in membership order
    """
    paid: dict[int, Decimal] = {m.id: Decimal("0") for m in members}
    owed: dict[int, Decimal] = {m.id: Decimal("0") for m in members}
    member_ids = [m.id for m in members]

    total_group_amount = Decimal("0")

    for expense in expenses:
        amount = expense.amount_in_base
        total_group_amount += amount

        if expense.payer_id not in paid:
            logger.debug(
                f"Payer {expense.payer_id} of expense {expense.id} is not a member"
            )
        paid[expense.payer_id] = paid.get(expense.payer_id, Decimal("0")) + amount

        if expense.shares:
            for share in expense.shares:
                if share.member_id not in owed:
                    logger.debug(
                        f"Share of expense {expense.id} names non-member "
                        f"{share.member_id}"
                    )
                owed[share.member_id] = (
                    owed.get(share.member_id, Decimal("0")) + share.amount
                )
            continue

        if not member_ids or amount <= 0:
            logger.debug(f"Expense {expense.id} has no shares and nothing to split")
            continue

        logger.debug(f"Expense {expense.id} has no shares; splitting equally")
        implicit = allocate_equal(amount, member_ids)
        for member_id, share_amount in implicit.shares.items():
            owed[member_id] += share_amount

    balances = []
    for member in members:
        net = paid[member.id] - owed[member.id]
        balances.append(
            MemberBalance(
                member_id=member.id,
                display_name=member.display_name,
                paid=paid[member.id],
                owed=owed[member.id],
                net=net,
                settlement=classify_net(net, settlement_epsilon),
            )
        )

    fair_share = total_group_amount / len(members) if members else Decimal("0")

    return GroupBalances(
        group_id=group_id,
        base_currency=base_currency,
        balances=balances,
        total_group_amount=total_group_amount,
        fair_share_per_person=fair_share,
    )
