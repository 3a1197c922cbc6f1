"""
Data access for on-chain voting: object storage, the staking ledger cache,
memo grammars and vote extraction.
"""

from .ledger import Account, CacheEntry, LedgerLoader, parse_ledger
from .memo import Direction, KeywordGrammar, MefGrammar, RankedGrammar, decode_memo
from .storage import (
    ArchiveFormat,
    AwsS3Provider,
    GcsProvider,
    StorageObject,
    StorageProvider,
    create_storage_provider,
)
from .votes import RawTransaction, Vote, VoteExtractor

__all__ = [
    "Account",
    "ArchiveFormat",
    "AwsS3Provider",
    "CacheEntry",
    "Direction",
    "GcsProvider",
    "KeywordGrammar",
    "LedgerLoader",
    "MefGrammar",
    "RankedGrammar",
    "RawTransaction",
    "StorageObject",
    "StorageProvider",
    "Vote",
    "VoteExtractor",
    "create_storage_provider",
    "decode_memo",
    "parse_ledger",
]
