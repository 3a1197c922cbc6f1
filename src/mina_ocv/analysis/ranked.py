import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from ..data.memo import MAX_RANKED_CHOICES
from ..errors import InvalidInputError

logger = logging.getLogger(__name__)

Ballot = Tuple[str, ...]


@dataclass(frozen=True)
class ElectionRound:
    """Immutable snapshot of one IRV round."""

    round_index: int
    vote_counts: Mapping[str, int]
    eliminated: FrozenSet[str]  # cumulative, after this round
    winners: Tuple[str, ...]  # cumulative, after this round
    elected_this_round: Tuple[str, ...] = ()
    eliminated_this_round: Tuple[str, ...] = ()
    exhausted: int = 0
    continuing_total: int = 0


@dataclass(frozen=True)
class ElectionResult:
    winners: Tuple[str, ...]
    rounds: Tuple[ElectionRound, ...]
    total_votes: int
    candidates: Tuple[str, ...] = field(default_factory=tuple)

    def get_round_summary(self) -> pd.DataFrame:
        """
        Get summary of all rounds as a DataFrame.

        Returns:
            DataFrame with round-by-round results
        """
        if not self.rounds:
            return pd.DataFrame()

        summary_data = []
        for round_obj in self.rounds:
            for candidate_id, votes in round_obj.vote_counts.items():
                summary_data.append(
                    {
                        "round": round_obj.round_index,
                        "candidate_id": candidate_id,
                        "votes": votes,
                        "status": self._get_candidate_status(candidate_id, round_obj),
                        "exhausted_votes": round_obj.exhausted,
                        "continuing_votes": round_obj.continuing_total,
                    }
                )

        return pd.DataFrame(summary_data)

    def _get_candidate_status(self, candidate_id: str, round_obj: ElectionRound) -> str:
        """Get the status of a candidate in a given round."""
        if candidate_id in round_obj.elected_this_round:
            return "elected"
        elif candidate_id in round_obj.eliminated_this_round:
            return "eliminated"
        else:
            return "continuing"

    def to_dict(self) -> Dict:
        """Winners, total votes and the per-round stats trail."""
        return {
            "winners": list(self.winners),
            "total_votes": self.total_votes,
            "stats": [
                {
                    "round": r.round_index,
                    "vote_counts": dict(r.vote_counts),
                    "elected": list(r.elected_this_round),
                    "eliminated": list(r.eliminated_this_round),
                    "exhausted": r.exhausted,
                }
                for r in self.rounds
            ],
        }


class RankedChoiceElection:
    """
    Multi-winner instant-runoff election.

    Each round counts every ballot for its highest-ranked candidate that has
    neither won nor been eliminated. A candidate with more than half of the
    continuing ballots wins and drops out of later rounds; otherwise the
    lowest candidate is eliminated. Eliminations stand for the rest of the
    election and there is no surplus transfer.

    Ties for last place eliminate the tied candidate that comes last in
    candidate order: the order given to the constructor, or sorted identifier
    order when no candidates are given.
    """

    def __init__(
        self, candidates: Optional[Sequence[str]] = None, winners_needed: int = 1
    ):
        """
        Initialize the election.

        Args:
            candidates: Candidate universe in priority order. Preferences for
                candidates outside it are skipped.
            winners_needed: Number of winners to select
        """
        if winners_needed < 1:
            raise InvalidInputError("winners_needed must be at least 1")
        self.winners_needed = winners_needed
        self.candidates: Optional[Tuple[str, ...]] = None
        if candidates is not None:
            self.candidates = tuple(dict.fromkeys(str(c) for c in candidates))

    def normalize_ballots(self, ballots: Iterable[Sequence[str]]) -> List[Ballot]:
        """Validate ballots and drop entries outside the candidate universe."""
        universe = set(self.candidates) if self.candidates is not None else None
        normalized = []
        for index, ballot in enumerate(ballots):
            ranking = tuple(str(c) for c in ballot)
            if len(ranking) > MAX_RANKED_CHOICES:
                raise InvalidInputError(
                    f"Ballot {index} ranks {len(ranking)} candidates, at most {MAX_RANKED_CHOICES} allowed"
                )
            if len(set(ranking)) != len(ranking):
                raise InvalidInputError(f"Ballot {index} ranks a candidate twice")
            if universe is not None:
                ranking = tuple(c for c in ranking if c in universe)
            if ranking:
                normalized.append(ranking)
        return normalized

    def run(self, ballots: Iterable[Sequence[str]]) -> ElectionResult:
        """
        Run the election.

        Args:
            ballots: Ranked ballots, most preferred first

        Returns:
            ElectionResult with winners in order of election and every round
        """
        ballots = self.normalize_ballots(ballots)
        order = self.candidates
        if order is None:
            order = tuple(sorted({c for ballot in ballots for c in ballot}))
        total_votes = len(ballots)

        logger.info(
            f"Starting IRV election: {len(order)} candidates, {total_votes} ballots, "
            f"{self.winners_needed} winner(s)"
        )

        winners: List[str] = []
        eliminated: set = set()
        rounds: List[ElectionRound] = []

        while len(winners) < self.winners_needed:
            active = [c for c in order if c not in eliminated and c not in winners]
            if not active:
                break

            counts: Dict[str, int] = {c: 0 for c in active}
            exhausted = 0
            for ballot in ballots:
                preference = next((c for c in ballot if c in counts), None)
                if preference is None:
                    exhausted += 1
                else:
                    counts[preference] += 1
            continuing = total_votes - exhausted

            round_index = len(rounds) + 1
            logger.debug(f"=== Round {round_index} === {counts} ({exhausted} exhausted)")

            elected: Tuple[str, ...] = ()
            dropped: Tuple[str, ...] = ()
            if continuing > 0:
                # max() keeps the first candidate in order on equal counts
                leader = max(active, key=lambda c: counts[c])
                if counts[leader] * 2 > continuing:
                    winners.append(leader)
                    elected = (leader,)
                    logger.info(
                        f"Candidate {leader} elected in round {round_index} with "
                        f"{counts[leader]} of {continuing} votes"
                    )
                else:
                    lowest = min(counts.values())
                    loser = [c for c in active if counts[c] == lowest][-1]
                    eliminated.add(loser)
                    dropped = (loser,)
                    logger.info(
                        f"Eliminating candidate {loser} with {lowest} votes in round {round_index}"
                    )

            rounds.append(
                ElectionRound(
                    round_index=round_index,
                    vote_counts=MappingProxyType(dict(counts)),
                    eliminated=frozenset(eliminated),
                    winners=tuple(winners),
                    elected_this_round=elected,
                    eliminated_this_round=dropped,
                    exhausted=exhausted,
                    continuing_total=continuing,
                )
            )

            if continuing == 0:
                logger.warning("All ballots exhausted before every seat was filled")
                break

        if len(winners) < self.winners_needed:
            logger.warning(
                f"Only {len(winners)} of {self.winners_needed} winners could be selected"
            )
        logger.info(f"IRV election complete: winners {winners} after {len(rounds)} rounds")

        return ElectionResult(
            winners=tuple(winners),
            rounds=tuple(rounds),
            total_votes=total_votes,
            candidates=tuple(order),
        )
