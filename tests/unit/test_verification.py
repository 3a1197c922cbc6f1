from dataclasses import replace
from decimal import Decimal

import pytest

from fakes import BASE_TIME
from mina_ocv.analysis.ranked import RankedChoiceElection
from mina_ocv.analysis.tally import tally_votes
from mina_ocv.analysis.verification import ResultsVerifier
from mina_ocv.data.memo import Direction
from mina_ocv.data.votes import Vote


def vote(account, direction):
    return Vote(account, 100, 0, BASE_TIME, "", direction=direction)


class TestTallyVerification:
    """Test invariant checks on binary tallies."""

    def setup_method(self):
        self.verifier = ResultsVerifier()

    @pytest.mark.unit
    def test_valid_tally_passes(self, sample_accounts):
        result = tally_votes(
            sample_accounts,
            [vote("A", Direction.FOR), vote("B", Direction.AGAINST), vote("C", Direction.FOR)],
        )
        report = self.verifier.verify_tally(sample_accounts, result)
        assert report["verification_passed"]
        assert report["failed_checks"] == []

    @pytest.mark.unit
    def test_tampered_tally_fails(self, sample_accounts):
        result = tally_votes(sample_accounts, [vote("A", Direction.FOR)])
        tampered = replace(result, positive_stake=result.positive_stake + Decimal(1))

        report = self.verifier.verify_tally(sample_accounts, tampered)
        assert not report["verification_passed"]
        assert "positive_weights_match" in report["failed_checks"]

    @pytest.mark.unit
    def test_wrong_total_fails(self, sample_accounts):
        result = tally_votes(sample_accounts[:2], [vote("A", Direction.FOR)])
        report = self.verifier.verify_tally(sample_accounts, result)
        assert report["failed_checks"] == ["total_matches_ledger"]


class TestElectionVerification:
    """Test invariant checks on IRV election trails."""

    def setup_method(self):
        self.verifier = ResultsVerifier()

    @pytest.mark.unit
    def test_valid_election_passes(self):
        ballots = [("A",)] * 4 + [("B",)] * 3 + [("C", "B")] * 2
        result = RankedChoiceElection().run(ballots)

        report = self.verifier.verify_election(ballots, result)
        assert report["verification_passed"]
        assert report["reappearing_candidates"] == []

    @pytest.mark.unit
    def test_ballot_count_mismatch_fails(self):
        ballots = [("A",), ("B",), ("A",)]
        result = RankedChoiceElection().run(ballots)

        report = self.verifier.verify_election(ballots + [("B",)], result)
        assert not report["verification_passed"]
        assert "total_votes_match" in report["failed_checks"]

    @pytest.mark.unit
    def test_report_text(self):
        ballots = [("A",), ("A", "B"), ("B",)]
        verifier = self.verifier
        report = verifier.verify_election(ballots, RankedChoiceElection().run(ballots))

        text = verifier.generate_verification_report(report)
        assert "VERIFICATION PASSED" in text
        assert "[ok  ] winners distinct" in text
