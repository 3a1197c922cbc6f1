"""
Proposal descriptors and the proposals manifest.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .data.votes import parse_timestamp
from .errors import InvalidInputError

logger = logging.getLogger(__name__)


class VoteStatus(Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


def _timestamp(value: Any, field_name: str) -> datetime:
    try:
        return parse_timestamp(value)
    except InvalidInputError as e:
        raise InvalidInputError(f"Invalid {field_name}: {value!r}") from e


def voting_status(
    start_time: datetime, end_time: datetime, now: Optional[datetime] = None
) -> VoteStatus:
    now = now or datetime.now(timezone.utc)
    if now < start_time:
        return VoteStatus.PENDING
    if now < end_time:
        return VoteStatus.IN_PROGRESS
    return VoteStatus.COMPLETED


@dataclass(frozen=True)
class Proposal:
    """A voting period: keyword, window and the ledger that weights it."""

    id: int
    key: str
    start_time: datetime
    end_time: datetime
    ledger_hash: Optional[str] = None
    category: str = ""
    network: str = "mainnet"
    title: str = ""
    description: str = ""
    url: str = ""

    def __post_init__(self):
        if not self.key or not self.key.strip():
            raise InvalidInputError(f"Proposal {self.id} has no voting keyword")
        if self.start_time > self.end_time:
            raise InvalidInputError(
                f"Proposal {self.id} starts after it ends "
                f"({self.start_time.isoformat()} > {self.end_time.isoformat()})"
            )

    def status_at(self, now: Optional[datetime] = None) -> VoteStatus:
        """Voting status at ``now`` (current UTC time by default)."""
        return voting_status(self.start_time, self.end_time, now)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proposal":
        try:
            return cls(
                id=int(data["id"]),
                key=str(data["key"]),
                start_time=_timestamp(data["startTime"], "startTime"),
                end_time=_timestamp(data["endTime"], "endTime"),
                ledger_hash=data.get("ledgerHash"),
                category=data.get("category", ""),
                network=str(data.get("network", "mainnet")).lower(),
                title=data.get("title", ""),
                description=data.get("description", ""),
                url=data.get("url", ""),
            )
        except InvalidInputError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(f"Malformed proposal entry: {e}") from e


def load_proposals(manifest: Union[bytes, str], network: str) -> List[Proposal]:
    """
    Parse a proposals manifest and keep the proposals for one network.

    Args:
        manifest: JSON document of the form {"proposals": [...]}
        network: Network name, e.g. "mainnet"

    Returns:
        Proposals for the network, in manifest order
    """
    try:
        document = json.loads(manifest)
    except ValueError as e:
        raise InvalidInputError(f"Invalid proposals manifest: {e}") from e
    if not isinstance(document, dict) or not isinstance(document.get("proposals"), list):
        raise InvalidInputError("Proposals manifest must contain a 'proposals' list")

    proposals = [Proposal.from_dict(entry) for entry in document["proposals"]]
    selected = [p for p in proposals if p.network == network.lower()]
    logger.info(f"Loaded {len(selected)} of {len(proposals)} proposals for {network}")
    return selected
