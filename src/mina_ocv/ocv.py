"""
Request-level orchestration: ledger snapshot + transactions -> result.

Transactions are supplied by the caller (the archive query layer); this module
only wires the loader, extractor and engines together.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from .analysis.ranked import ElectionResult, RankedChoiceElection
from .analysis.tally import (
    AbstainingDelegatePolicy,
    ConsiderationThreshold,
    TallyResult,
    tally_votes,
)
from .data.ledger import LedgerLoader
from .data.memo import KeywordGrammar, MefGrammar, RankedGrammar
from .data.votes import RawTransaction, VoteExtractor, parse_timestamp
from .errors import InvalidInputError, ProposalNotFoundError
from .proposals import Proposal, voting_status

logger = logging.getLogger(__name__)


class Ocv:
    """On-chain voting results service."""

    def __init__(
        self,
        loader: LedgerLoader,
        proposals: Sequence[Proposal] = (),
        policy: AbstainingDelegatePolicy = AbstainingDelegatePolicy.COUNT_DELEGATOR,
    ):
        self.loader = loader
        self.proposals = {p.id: p for p in proposals}
        self.policy = policy

    def proposal(self, proposal_id: int) -> Proposal:
        try:
            return self.proposals[proposal_id]
        except KeyError:
            raise ProposalNotFoundError(proposal_id) from None

    def proposal_result(
        self,
        proposal_id: int,
        transactions: Iterable[RawTransaction],
        now: Optional[datetime] = None,
    ) -> TallyResult:
        """
        Stake-weighted result of a keyword proposal.

        Args:
            proposal_id: Proposal from the manifest
            transactions: Transactions within the proposal's window
            now: Reference time for the status (current time by default)
        """
        proposal = self.proposal(proposal_id)
        if not proposal.ledger_hash:
            raise InvalidInputError(f"Proposal {proposal_id} has no ledger hash yet")

        logger.info(f"Computing result for proposal {proposal_id} ({proposal.key})")
        accounts = self.loader.load(proposal.ledger_hash)
        extractor = VoteExtractor(
            KeywordGrammar(proposal.key), proposal.start_time, proposal.end_time
        )
        votes = extractor.extract(transactions)
        return tally_votes(
            accounts, votes, status=proposal.status_at(now), policy=self.policy
        )

    def mef_result(
        self,
        round_id,
        proposal_id,
        ledger_hash: str,
        start_time,
        end_time,
        transactions: Iterable[RawTransaction],
        threshold: Optional[ConsiderationThreshold] = None,
        now: Optional[datetime] = None,
    ) -> TallyResult:
        """Stake-weighted consideration result of an MEF proposal."""
        start, end = parse_timestamp(start_time), parse_timestamp(end_time)
        extractor = VoteExtractor(MefGrammar(round_id, proposal_id), start, end)
        logger.info(f"Computing MEF{round_id} consideration for proposal {proposal_id}")
        accounts = self.loader.load(ledger_hash)
        votes = extractor.extract(transactions)
        return tally_votes(
            accounts,
            votes,
            status=voting_status(start, end, now),
            policy=self.policy,
            threshold=threshold,
        )

    def ranked_vote(
        self,
        keyword: Optional[str],
        candidates: Optional[Sequence[str]],
        start_time,
        end_time,
        transactions: Iterable[RawTransaction],
        winners_needed: int = 1,
    ) -> ElectionResult:
        """One-account-one-ballot instant-runoff election over ranked memos."""
        start = parse_timestamp(start_time) if start_time is not None else None
        end = parse_timestamp(end_time) if end_time is not None else None
        extractor = VoteExtractor(RankedGrammar(keyword, candidates), start, end)
        ballots: List = [vote.ranking for vote in extractor.extract(transactions)]
        election = RankedChoiceElection(candidates, winners_needed=winners_needed)
        return election.run(ballots)
