#!/usr/bin/env python3
"""
Run a ranked-choice (IRV) election over a JSON file of ballots.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add src to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mina_ocv.analysis.ranked import RankedChoiceElection  # noqa: E402
from mina_ocv.analysis.verification import ResultsVerifier  # noqa: E402
from mina_ocv.errors import OcvError  # noqa: E402

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Run IRV election")
    parser.add_argument(
        "--ballots", required=True, help="JSON file with a list of ranked ballots"
    )
    parser.add_argument(
        "--candidates", help="Comma-separated candidate ids in priority order"
    )
    parser.add_argument(
        "--winners", type=int, default=1, help="Number of winners (default: 1)"
    )
    parser.add_argument("--export", help="Export round summary to CSV file")

    args = parser.parse_args()

    ballots_path = Path(args.ballots)
    if not ballots_path.exists():
        logger.error(f"Ballots file not found: {ballots_path}")
        sys.exit(1)

    candidates = args.candidates.split(",") if args.candidates else None

    try:
        ballots = json.loads(ballots_path.read_text())
        election = RankedChoiceElection(candidates, winners_needed=args.winners)
        result = election.run(ballots)
    except (OcvError, ValueError) as e:
        logger.error(f"Error running election: {e}")
        sys.exit(1)

    print("\n=== Round-by-Round Results ===")
    round_summary = result.get_round_summary()
    for round_obj in result.rounds:
        print(f"\nRound {round_obj.round_index}:")
        round_data = round_summary[round_summary["round"] == round_obj.round_index]
        for _, row in round_data.sort_values("votes", ascending=False).iterrows():
            status_symbol = {"elected": "*", "eliminated": "x"}.get(row["status"], " ")
            print(f"  {status_symbol} {row['candidate_id']:25s}: {row['votes']:8d} votes")
        if round_obj.exhausted > 0:
            print(f"    {'Exhausted':25s}: {round_obj.exhausted:8d} votes")

    print(f"\nWinners ({len(result.winners)} of {args.winners}):")
    for i, winner in enumerate(result.winners, 1):
        print(f"  {i}. {winner}")

    verifier = ResultsVerifier()
    report = verifier.verify_election(election.normalize_ballots(ballots), result)
    print("\n" + verifier.generate_verification_report(report))

    if args.export:
        export_path = Path(args.export).with_suffix(".csv")
        round_summary.to_csv(export_path, index=False)
        print(f"\nRound summary exported to: {export_path}")


if __name__ == "__main__":
    main()
