"""
Analysis module for on-chain vote results.

This module provides the pure computations behind a result:
- aggregate_stake: per-delegate voting stake from a ledger snapshot
- tally_votes: stake-weighted FOR/AGAINST tally with delegation override
- RankedChoiceElection: multi-winner instant-runoff election with round trail
- ResultsVerifier: invariant checks on finished results
"""

from .ranked import ElectionResult, ElectionRound, RankedChoiceElection
from .stake import aggregate_stake, format_percentage
from .tally import (
    AbstainingDelegatePolicy,
    ConsiderationThreshold,
    TallyResult,
    WeightedVote,
    tally_votes,
)
from .verification import ResultsVerifier

__all__ = [
    "AbstainingDelegatePolicy",
    "ConsiderationThreshold",
    "ElectionResult",
    "ElectionRound",
    "RankedChoiceElection",
    "ResultsVerifier",
    "TallyResult",
    "WeightedVote",
    "aggregate_stake",
    "format_percentage",
    "tally_votes",
]
