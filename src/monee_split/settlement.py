"""Classify net balances into settlement states."""

from decimal import Decimal

from .models import Settlement, SettlementState

SETTLEMENT_EPSILON = Decimal("0.005")  # half a cent


def classify_net(net: Decimal, epsilon: Decimal = SETTLEMENT_EPSILON) -> Settlement:
    """
    Turn a net position (paid - owed) into an actionable status.

    |net| < epsilon is SETTLED, positive is SHOULD_RECEIVE(net), negative is
    OWES(|net|). The amount is reported unrounded.
    """
    if abs(net) < epsilon:
        return Settlement(state=SettlementState.SETTLED)
    if net > 0:
        return Settlement(state=SettlementState.SHOULD_RECEIVE, amount=net)
    return Settlement(state=SettlementState.OWES, amount=-net)
