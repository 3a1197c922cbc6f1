"""
Audit checks for finished tallies and elections.

Results are recomputable from public inputs; these checks confirm that a
result is internally consistent before it is published.
"""

import logging
from typing import Dict, Iterable, List, Sequence

from ..data.ledger import Account
from ..data.memo import Direction
from .ranked import ElectionResult
from .stake import ZERO, aggregate_stake, total_balance
from .tally import TallyResult

logger = logging.getLogger(__name__)


class ResultsVerifier:
    """
    Verifies tally and election results against their invariants.
    """

    def verify_tally(self, accounts: Sequence[Account], result: TallyResult) -> Dict:
        """
        Check a binary tally.

        Args:
            accounts: Ledger snapshot the tally was computed from
            result: Tally to verify

        Returns:
            Verification report dictionary
        """
        logger.info("Verifying tally result")
        balance = total_balance(accounts)
        aggregated = sum(aggregate_stake(accounts).values(), ZERO)

        positive = sum(
            (v.weight for v in result.votes if v.direction is Direction.FOR), ZERO
        )
        negative = sum(
            (v.weight for v in result.votes if v.direction is Direction.AGAINST), ZERO
        )
        counted = result.positive_stake + result.negative_stake

        checks = {
            "stake_conserved": aggregated == balance,
            "total_matches_ledger": result.total_stake == balance,
            "positive_weights_match": positive == result.positive_stake,
            "negative_weights_match": negative == result.negative_stake,
            "no_negative_weights": all(v.weight >= ZERO for v in result.votes),
            "counted_within_total": counted <= result.total_stake,
        }
        return self._report(checks)

    def verify_election(
        self, ballots: Iterable[Sequence[str]], result: ElectionResult
    ) -> Dict:
        """
        Check an IRV election trail.

        Args:
            ballots: Ballots the election was run on (after normalization)
            result: Election to verify

        Returns:
            Verification report dictionary
        """
        logger.info("Verifying election result")
        non_empty = sum(1 for ballot in ballots if len(ballot) > 0)
        rounds = result.rounds

        first_round_total = sum(rounds[0].vote_counts.values()) if rounds else 0
        reappearing: List[str] = []
        for previous, current in zip(rounds, rounds[1:]):
            for candidate in previous.eliminated:
                if current.vote_counts.get(candidate, 0) > 0:
                    reappearing.append(candidate)

        checks = {
            "first_round_counts_all_ballots": first_round_total == non_empty,
            "total_votes_match": result.total_votes == non_empty,
            "eliminated_never_reappear": not reappearing,
            "winners_distinct": len(set(result.winners)) == len(result.winners),
            "rounds_conserve_ballots": all(
                sum(r.vote_counts.values()) + r.exhausted == result.total_votes
                for r in rounds
            ),
        }
        report = self._report(checks)
        report["reappearing_candidates"] = sorted(set(reappearing))
        return report

    def _report(self, checks: Dict[str, bool]) -> Dict:
        failed = [name for name, passed in checks.items() if not passed]
        if failed:
            logger.warning(f"Verification failed: {', '.join(failed)}")
        return {
            "checks": checks,
            "failed_checks": failed,
            "verification_passed": not failed,
        }

    def generate_verification_report(self, verification_results: Dict) -> str:
        """
        Generate a human-readable verification report.

        Args:
            verification_results: Results from verify_tally() or verify_election()

        Returns:
            Formatted verification report string
        """
        report = []
        report.append("=" * 60)
        report.append("RESULTS VERIFICATION REPORT")
        report.append("=" * 60)

        if verification_results["verification_passed"]:
            report.append("VERIFICATION PASSED - all invariants hold")
        else:
            report.append("VERIFICATION FAILED - invariants violated")

        report.append("")
        for name, passed in verification_results["checks"].items():
            marker = "ok  " if passed else "FAIL"
            report.append(f"  [{marker}] {name.replace('_', ' ')}")

        return "\n".join(report)
