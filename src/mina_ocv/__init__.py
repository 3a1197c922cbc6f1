"""
mina_ocv: reproducible on-chain vote tallying.

Stake-weighted FOR/AGAINST tallies and ranked-choice elections computed from
a staking ledger snapshot and the vote transactions of a voting window.
"""

from .errors import (
    InvalidInputError,
    LedgerNotFoundError,
    OcvError,
    ParseError,
    ProposalNotFoundError,
    StorageError,
)
from .ocv import Ocv
from .proposals import Proposal, VoteStatus, load_proposals

__version__ = "0.1.0"

__all__ = [
    "InvalidInputError",
    "LedgerNotFoundError",
    "Ocv",
    "OcvError",
    "ParseError",
    "Proposal",
    "ProposalNotFoundError",
    "StorageError",
    "VoteStatus",
    "load_proposals",
]
