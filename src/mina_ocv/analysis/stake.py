"""
Stake aggregation over a staking ledger snapshot.

Every balance is added to its delegate's total. Keys that delegate to someone
else are then removed, so their stake is only counted through the delegate.
All arithmetic is exact Decimal.
"""

import logging
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Set

from ..data.ledger import Account

logger = logging.getLogger(__name__)

ZERO = Decimal(0)
PERCENT_PLACES = Decimal("0.0001")


def aggregate_stake(accounts: Iterable[Account]) -> Dict[str, Decimal]:
    """
    Aggregate voting stake per delegate.

    Args:
        accounts: Ledger accounts

    Returns:
        Mapping of voter public key to total delegated stake
    """
    accounts = tuple(accounts)
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    targets: Set[str] = set()

    for account in accounts:
        totals[account.delegate] += account.balance
        targets.add(account.delegate)

    delegating = delegators(accounts)

    # A delegator that is also someone's delegate target keeps the inbound stake.
    for public_key in delegating - targets:
        totals.pop(public_key, None)

    logger.debug(
        f"Aggregated stake for {len(totals)} voters, {len(delegating)} delegators"
    )
    return dict(totals)


def delegators(accounts: Iterable[Account]) -> Set[str]:
    """Public keys of accounts delegating to someone other than themselves."""
    return {a.public_key for a in accounts if a.is_delegating}


def total_balance(accounts: Iterable[Account]) -> Decimal:
    return sum((a.balance for a in accounts), ZERO)


def safe_ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator, or zero when the denominator is zero."""
    if denominator == ZERO:
        return ZERO
    return numerator / denominator


def format_percentage(ratio: Decimal) -> str:
    """
    Render a ratio as a percentage string.

    Four decimal places, trailing zeros trimmed: 0.125 -> "12.5", 0 -> "0".
    """
    value = (Decimal(ratio) * 100).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text
