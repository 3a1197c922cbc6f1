"""
Error taxonomy for ledger retrieval, parsing and tallying.

Storage and parse failures carry provider/hash context so they can be
diagnosed at the request boundary. They never include credential material.
"""

from typing import Optional


class OcvError(Exception):
    """Base class for all errors raised by mina_ocv."""


class InvalidInputError(OcvError, ValueError):
    """Raised for malformed input that is rejected before any I/O."""


class StorageError(OcvError):
    """A network, auth or lookup failure against an object store."""

    def __init__(
        self,
        provider: str,
        operation: str,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ):
        self.provider = provider
        self.operation = operation
        self.cause = cause
        if message is None:
            message = f"{provider} {operation} failed"
            if cause is not None:
                message = f"{message}: {type(cause).__name__}: {cause}"
        super().__init__(message)


class LedgerNotFoundError(StorageError):
    """No object in the bucket matches the requested ledger hash."""

    def __init__(self, provider: str, ledger_hash: str):
        self.ledger_hash = ledger_hash
        super().__init__(
            provider, "lookup", message=f"Ledger {ledger_hash} not found via {provider}"
        )


class ParseError(OcvError):
    """Malformed ledger JSON or archive."""

    def __init__(self, ledger_hash: str, reason: str):
        self.ledger_hash = ledger_hash
        self.reason = reason
        super().__init__(f"Could not parse ledger {ledger_hash}: {reason}")


class ProposalNotFoundError(OcvError, LookupError):
    """Raised when a proposal id is not present in the manifest."""

    def __init__(self, proposal_id):
        self.proposal_id = proposal_id
        super().__init__(f"Proposal {proposal_id} not found")
