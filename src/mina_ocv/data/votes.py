"""
Vote extraction from raw transaction streams.

Candidates are canonical self-payments inside the voting window whose memo
matches a grammar. When one account has several qualifying transactions only
the latest counts: higher block height wins, and within a block the higher
nonce wins. The deduplication runs as a DuckDB window query so the result does
not depend on input order.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from ..errors import InvalidInputError
from .database import VoteDatabase
from .memo import Direction, MemoChoice, decode_memo

logger = logging.getLogger(__name__)

PAYMENT = "PAYMENT"

LATEST_VOTE_SQL = """
    SELECT row_id
    FROM (
        SELECT
            row_id,
            account,
            block_height,
            nonce,
            ROW_NUMBER() OVER (
                PARTITION BY account
                ORDER BY block_height DESC, nonce DESC, ts DESC, memo DESC
            ) AS vote_rank
        FROM candidate_votes
    )
    WHERE vote_rank = 1
    ORDER BY block_height DESC, nonce DESC, account
"""


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into an aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value:
        text = value.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidInputError(f"Invalid timestamp: {value!r}") from e
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise InvalidInputError(f"Invalid timestamp: {value!r}")


def parse_canonical(value: Any) -> bool:
    """Accept a JSON boolean or the strings "true" and "false"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise InvalidInputError(f"Invalid canonical flag: {value!r}")


@dataclass(frozen=True)
class RawTransaction:
    """A transaction as supplied by the archive data source."""

    block_height: int
    block_canonical: bool
    timestamp: datetime
    nonce: int
    source: str
    receiver: str
    memo: str
    kind: str = PAYMENT

    def __post_init__(self):
        # Window comparisons need aware datetimes; naive values are taken as UTC
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))

    @property
    def is_self_payment(self) -> bool:
        return self.kind == PAYMENT and self.source == self.receiver

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RawTransaction":
        """
        Build a transaction from an archive record.

        Args:
            record: {blockHeight, canonical, memo, nonce, receiver.publicKey,
                source.publicKey, kind, dateTime}
        """
        try:
            return cls(
                block_height=int(record["blockHeight"]),
                block_canonical=parse_canonical(record["canonical"]),
                timestamp=parse_timestamp(record["dateTime"]),
                nonce=int(record["nonce"]),
                source=record["source"]["publicKey"],
                receiver=record["receiver"]["publicKey"],
                memo=record.get("memo") or "",
                kind=str(record.get("kind", PAYMENT)).upper(),
            )
        except InvalidInputError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(f"Malformed transaction record: {e}") from e


@dataclass(frozen=True)
class Vote:
    """The current vote of one account."""

    account: str
    block_height: int
    nonce: int
    timestamp: datetime
    memo: str
    direction: Optional[Direction] = None
    target_key: Optional[str] = None
    ranking: Tuple[str, ...] = ()


class VoteExtractor:
    """
    Filters, decodes and deduplicates transactions into one vote per account.
    """

    def __init__(
        self,
        grammar,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ):
        """
        Initialize the extractor.

        Args:
            grammar: KeywordGrammar, MefGrammar or RankedGrammar
            start_time: Inclusive start of the voting window
            end_time: Inclusive end of the voting window
        """
        if start_time is not None:
            start_time = parse_timestamp(start_time)
        if end_time is not None:
            end_time = parse_timestamp(end_time)
        if start_time and end_time and start_time > end_time:
            raise InvalidInputError(
                f"Voting window start {start_time.isoformat()} is after end {end_time.isoformat()}"
            )
        self.grammar = grammar
        self.start_time = start_time
        self.end_time = end_time

    def _in_window(self, timestamp: datetime) -> bool:
        if self.start_time is not None and timestamp < self.start_time:
            return False
        if self.end_time is not None and timestamp > self.end_time:
            return False
        return True

    def qualifying(
        self, transactions: Iterable[RawTransaction]
    ) -> List[Tuple[RawTransaction, str, MemoChoice]]:
        """Transactions that are valid votes, with decoded memo and choice."""
        matches = []
        dropped = 0
        for tx in transactions:
            if not (tx.block_canonical and tx.is_self_payment):
                dropped += 1
                continue
            if not self._in_window(tx.timestamp):
                dropped += 1
                continue
            memo = decode_memo(tx.memo)
            choice = self.grammar.parse(memo) if memo is not None else None
            if choice is None:
                dropped += 1
                continue
            matches.append((tx, memo, choice))

        logger.debug(f"{len(matches)} qualifying vote transactions, {dropped} dropped")
        return matches

    def extract(self, transactions: Iterable[RawTransaction]) -> List[Vote]:
        """
        Extract the current vote of every account.

        Args:
            transactions: Raw transactions for the voting window, any order

        Returns:
            One Vote per account, latest first
        """
        matches = self.qualifying(transactions)
        if not matches:
            return []

        frame = pd.DataFrame(
            {
                "row_id": range(len(matches)),
                "account": [tx.source for tx, _, _ in matches],
                "block_height": [tx.block_height for tx, _, _ in matches],
                "nonce": [tx.nonce for tx, _, _ in matches],
                "ts": [int(tx.timestamp.timestamp() * 1_000_000) for tx, _, _ in matches],
                "memo": [memo for _, memo, _ in matches],
            }
        ).astype({"row_id": "int64", "block_height": "int64", "nonce": "int64", "ts": "int64"})

        with VoteDatabase() as db:
            db.register("candidate_votes", frame)
            latest = db.query(LATEST_VOTE_SQL)

        votes = []
        for row_id in latest["row_id"].tolist():
            tx, memo, choice = matches[int(row_id)]
            votes.append(
                Vote(
                    account=tx.source,
                    block_height=tx.block_height,
                    nonce=tx.nonce,
                    timestamp=tx.timestamp,
                    memo=memo,
                    direction=choice.direction,
                    target_key=choice.target_key,
                    ranking=choice.ranking,
                )
            )

        logger.info(
            f"Extracted {len(votes)} votes from {len(matches)} qualifying transactions"
        )
        return votes
