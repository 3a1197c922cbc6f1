"""
Stake-weighted FOR/AGAINST tally with delegation override.

A delegate votes with everything delegated to it. A delegator that casts its
own vote takes its balance back: if the delegate voted the other way the
balance moves from the delegate to the delegator's side, if both agree nothing
changes. When the delegate did not vote at all, AbstainingDelegatePolicy
decides whether the delegator's balance is counted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Optional, Sequence, Tuple

from ..data.ledger import Account
from ..data.memo import Direction
from ..data.votes import Vote
from ..errors import InvalidInputError
from ..proposals import VoteStatus
from .stake import ZERO, aggregate_stake, format_percentage, safe_ratio

logger = logging.getLogger(__name__)


class AbstainingDelegatePolicy(Enum):
    """What a delegator's vote is worth when its delegate did not vote."""

    COUNT_DELEGATOR = "count_delegator"
    IGNORE_DELEGATOR = "ignore_delegator"


@dataclass(frozen=True)
class ConsiderationThreshold:
    """
    Eligibility bar for MEF consideration, supplied by configuration.

    participation = (positive + negative) / total stake
    approval = positive / (positive + negative)
    """

    min_participation: Decimal = ZERO
    min_approval: Decimal = ZERO

    def is_met(self, total: Decimal, positive: Decimal, negative: Decimal) -> bool:
        cast = positive + negative
        if cast == ZERO:
            return False
        participation = safe_ratio(cast, total)
        approval = safe_ratio(positive, cast)
        return participation >= self.min_participation and approval >= self.min_approval


@dataclass(frozen=True)
class WeightedVote:
    """A vote together with the stake it carries after overrides."""

    account: str
    direction: Direction
    weight: Decimal
    block_height: int
    nonce: int
    timestamp: datetime


@dataclass(frozen=True)
class TallyResult:
    total_stake: Decimal
    positive_stake: Decimal
    negative_stake: Decimal
    positive_count: int
    negative_count: int
    status: VoteStatus
    eligible: Optional[bool] = None
    votes: Tuple[WeightedVote, ...] = field(default_factory=tuple)

    @property
    def vote_count(self) -> int:
        return self.positive_count + self.negative_count

    @property
    def positive_ratio(self) -> Decimal:
        return safe_ratio(self.positive_stake, self.total_stake)

    @property
    def negative_ratio(self) -> Decimal:
        return safe_ratio(self.negative_stake, self.total_stake)

    @property
    def positive_percentage(self) -> str:
        return format_percentage(self.positive_ratio)

    @property
    def negative_percentage(self) -> str:
        return format_percentage(self.negative_ratio)

    def to_dict(self) -> Dict:
        """Plain representation with decimals as strings."""
        return {
            "total_stake_weight": str(self.total_stake),
            "positive_stake_weight": str(self.positive_stake),
            "negative_stake_weight": str(self.negative_stake),
            "positive_percentage": self.positive_percentage,
            "negative_percentage": self.negative_percentage,
            "positive_count": self.positive_count,
            "negative_count": self.negative_count,
            "vote_count": self.vote_count,
            "status": self.status.value,
            "eligible": self.eligible,
        }


def _index_votes(votes: Iterable[Vote]) -> Dict[str, Vote]:
    indexed: Dict[str, Vote] = {}
    for vote in votes:
        if vote.direction is None:
            raise InvalidInputError(f"Vote from {vote.account} has no direction")
        if vote.account in indexed:
            raise InvalidInputError(f"Duplicate vote for account {vote.account}")
        indexed[vote.account] = vote
    return indexed


def compute_weights(
    accounts: Sequence[Account],
    votes: Dict[str, Vote],
    stake: Dict[str, Decimal],
    policy: AbstainingDelegatePolicy = AbstainingDelegatePolicy.COUNT_DELEGATOR,
) -> Dict[str, Decimal]:
    """
    Effective stake per voting account.

    Args:
        accounts: Ledger accounts
        votes: Current vote per account
        stake: Aggregated stake from aggregate_stake()
        policy: Treatment of delegators whose delegate did not vote

    Returns:
        Mapping of voting account to the stake its vote carries
    """
    weights = {account: stake.get(account, ZERO) for account in votes}
    ledger = {a.public_key: a for a in accounts}

    for account, vote in votes.items():
        holder = ledger.get(account)
        if holder is None or not holder.is_delegating:
            continue

        delegate_vote = votes.get(holder.delegate)
        if delegate_vote is not None and delegate_vote.direction == vote.direction:
            continue
        if delegate_vote is None and policy is AbstainingDelegatePolicy.IGNORE_DELEGATOR:
            continue

        weights[account] += holder.balance
        if delegate_vote is not None:
            weights[holder.delegate] -= holder.balance
            logger.debug(
                f"{account} overrides delegate {holder.delegate} with {holder.balance}"
            )

    return weights


def tally_votes(
    accounts: Sequence[Account],
    votes: Iterable[Vote],
    status: VoteStatus = VoteStatus.COMPLETED,
    policy: AbstainingDelegatePolicy = AbstainingDelegatePolicy.COUNT_DELEGATOR,
    threshold: Optional[ConsiderationThreshold] = None,
) -> TallyResult:
    """
    Produce the stake-weighted result of a binary vote.

    Args:
        accounts: Ledger snapshot accounts
        votes: Current vote per account (from VoteExtractor)
        status: Voting period status at the time of the tally
        policy: Treatment of delegators whose delegate did not vote
        threshold: Optional eligibility bar for MEF consideration

    Returns:
        TallyResult
    """
    stake = aggregate_stake(accounts)
    total = sum(stake.values(), ZERO)
    indexed = _index_votes(votes)
    weights = compute_weights(accounts, indexed, stake, policy)

    positive = negative = ZERO
    positive_count = negative_count = 0
    weighted = []
    for account, vote in indexed.items():
        weight = weights[account]
        if vote.direction is Direction.FOR:
            positive += weight
            positive_count += 1
        else:
            negative += weight
            negative_count += 1
        weighted.append(
            WeightedVote(
                account=account,
                direction=vote.direction,
                weight=weight,
                block_height=vote.block_height,
                nonce=vote.nonce,
                timestamp=vote.timestamp,
            )
        )

    eligible = threshold.is_met(total, positive, negative) if threshold else None
    result = TallyResult(
        total_stake=total,
        positive_stake=positive,
        negative_stake=negative,
        positive_count=positive_count,
        negative_count=negative_count,
        status=status,
        eligible=eligible,
        votes=tuple(weighted),
    )
    logger.info(
        f"Tallied {result.vote_count} votes: {result.positive_percentage}% for, "
        f"{result.negative_percentage}% against of {total} total stake"
    )
    return result
