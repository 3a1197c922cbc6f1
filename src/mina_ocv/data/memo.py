"""
Transaction memo decoding and the closed vote grammars.

A memo is base58check encoded: one version byte, then the memo tag byte,
a length byte and the (zero padded) payload. Only the first ``length`` payload
bytes carry the text.

Grammars are exact, case-insensitive matches against a small set of forms.
Anything else is not a vote and yields None; it is never an error.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import base58

from ..errors import InvalidInputError

logger = logging.getLogger(__name__)

MAX_RANKED_CHOICES = 8
MEMO_HEADER_LENGTH = 3  # version, tag, length


class Direction(Enum):
    FOR = "FOR"
    AGAINST = "AGAINST"


@dataclass(frozen=True)
class MemoChoice:
    """What a memo expresses once it matches a grammar."""

    direction: Optional[Direction] = None
    target_key: Optional[str] = None
    ranking: Tuple[str, ...] = ()


def decode_memo(memo: Optional[str]) -> Optional[str]:
    """
    Decode a base58check transaction memo to text.

    Args:
        memo: Base58 memo as stored in the archive

    Returns:
        Memo text, or None when it cannot be decoded
    """
    if not memo:
        return None
    try:
        raw = base58.b58decode_check(memo)
    except ValueError:
        return None
    if len(raw) < MEMO_HEADER_LENGTH:
        return None
    length = raw[2]
    payload = raw[MEMO_HEADER_LENGTH:MEMO_HEADER_LENGTH + length]
    if len(payload) != length:
        return None
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return None


class KeywordGrammar:
    """``<keyword>`` votes FOR, ``no <keyword>`` votes AGAINST."""

    def __init__(self, keyword: str):
        if not keyword or not keyword.strip():
            raise InvalidInputError("Voting keyword must not be empty")
        self.keyword = keyword.strip().lower()

    def parse(self, memo: str) -> Optional[MemoChoice]:
        text = memo.lower()
        if text == self.keyword:
            return MemoChoice(direction=Direction.FOR, target_key=self.keyword)
        if text == f"no {self.keyword}":
            return MemoChoice(direction=Direction.AGAINST, target_key=self.keyword)
        return None


class MefGrammar:
    """``MEF<round> YES <proposal>`` / ``MEF<round> NO <proposal>``."""

    def __init__(self, round_id, proposal_id):
        self.round_id = str(round_id).strip()
        self.proposal_id = str(proposal_id).strip()
        if not self.round_id or not self.proposal_id:
            raise InvalidInputError("MEF round and proposal ids are required")
        prefix = f"mef{self.round_id}".lower()
        target = self.proposal_id.lower()
        self._forms = {
            f"{prefix} yes {target}": Direction.FOR,
            f"{prefix} no {target}": Direction.AGAINST,
        }

    def parse(self, memo: str) -> Optional[MemoChoice]:
        direction = self._forms.get(memo.lower())
        if direction is None:
            return None
        return MemoChoice(direction=direction, target_key=self.proposal_id)


class RankedGrammar:
    """
    Ordered list of up to eight candidate ids, optionally after a keyword.

    ``"MEF3 4 1 7"`` with keyword ``MEF3`` ranks candidates 4, 1, 7.
    Ids are compared case-insensitively and returned in the universe's
    spelling when a candidate universe is given.
    """

    _separator = re.compile(r"\s+")

    def __init__(
        self, keyword: Optional[str] = None, candidates: Optional[Sequence[str]] = None
    ):
        self.keyword = keyword.strip().lower() if keyword else None
        self.candidates = None
        if candidates is not None:
            self.candidates = {str(c).lower(): str(c) for c in candidates}

    def parse(self, memo: str) -> Optional[MemoChoice]:
        tokens = [t for t in self._separator.split(memo.strip()) if t]
        if self.keyword is not None:
            if not tokens or tokens[0].lower() != self.keyword:
                return None
            tokens = tokens[1:]

        if not 1 <= len(tokens) <= MAX_RANKED_CHOICES:
            return None

        ranking = []
        seen = set()
        for token in tokens:
            key = token.lower()
            if key in seen:
                return None
            seen.add(key)
            if self.candidates is not None:
                if key not in self.candidates:
                    return None
                ranking.append(self.candidates[key])
            else:
                ranking.append(token)

        return MemoChoice(ranking=tuple(ranking), target_key=self.keyword)
