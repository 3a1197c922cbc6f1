#!/usr/bin/env python3
"""
Tally a keyword vote from a local ledger JSON file and a JSON file of
archive transaction records.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add src to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mina_ocv.analysis.tally import AbstainingDelegatePolicy, tally_votes  # noqa: E402
from mina_ocv.analysis.verification import ResultsVerifier  # noqa: E402
from mina_ocv.data.ledger import parse_ledger  # noqa: E402
from mina_ocv.data.memo import KeywordGrammar  # noqa: E402
from mina_ocv.data.votes import RawTransaction, VoteExtractor, parse_timestamp  # noqa: E402
from mina_ocv.errors import OcvError  # noqa: E402

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Run stake-weighted tally")
    parser.add_argument("--ledger", required=True, help="Staking ledger JSON file")
    parser.add_argument(
        "--transactions", required=True, help="JSON file with transaction records"
    )
    parser.add_argument("--keyword", required=True, help="Voting keyword, e.g. MIP1")
    parser.add_argument("--start", help="Voting window start (ISO-8601)")
    parser.add_argument("--end", help="Voting window end (ISO-8601)")
    parser.add_argument(
        "--ignore-abstaining-delegates",
        action="store_true",
        help="Do not count delegators whose delegate did not vote",
    )

    args = parser.parse_args()

    for path in (args.ledger, args.transactions):
        if not Path(path).exists():
            logger.error(f"File not found: {path}")
            sys.exit(1)

    policy = (
        AbstainingDelegatePolicy.IGNORE_DELEGATOR
        if args.ignore_abstaining_delegates
        else AbstainingDelegatePolicy.COUNT_DELEGATOR
    )

    try:
        ledger_path = Path(args.ledger)
        accounts = parse_ledger(ledger_path.read_bytes(), ledger_path.stem)
        records = json.loads(Path(args.transactions).read_text())
        transactions = [RawTransaction.from_record(r) for r in records]
        start = parse_timestamp(args.start) if args.start else None
        end = parse_timestamp(args.end) if args.end else None
        extractor = VoteExtractor(KeywordGrammar(args.keyword), start, end)
        result = tally_votes(accounts, extractor.extract(transactions), policy=policy)
    except (OcvError, ValueError) as e:
        logger.error(f"Error running tally: {e}")
        sys.exit(1)

    print(json.dumps(result.to_dict(), indent=2))

    verifier = ResultsVerifier()
    print(verifier.generate_verification_report(verifier.verify_tally(accounts, result)))


if __name__ == "__main__":
    main()
