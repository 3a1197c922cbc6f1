"""
Staking ledger cache and loader.

Resolves a ledger hash to a parsed tuple of Account records. Ledgers are
content addressed, so once a hash is materialized on disk (or in memory) it is
never fetched or invalidated again for the life of the process.

Concurrent requests for the same hash share a single download. Each download
runs on its own thread, so a caller that stops waiting does not cancel the
download for anyone else waiting on the same hash.
"""

import io
import json
import logging
import os
import random
import re
import tarfile
import tempfile
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ..errors import InvalidInputError, LedgerNotFoundError, ParseError, StorageError
from .storage import ArchiveFormat, StorageProvider

logger = logging.getLogger(__name__)

LEDGER_HASH_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


@dataclass(frozen=True)
class Account:
    """One account in a staking ledger snapshot."""

    public_key: str
    balance: Decimal
    delegate: str

    @property
    def is_delegating(self) -> bool:
        return self.delegate != self.public_key


@dataclass(frozen=True)
class CacheEntry:
    ledger_hash: str
    local_path: Path


def validate_ledger_hash(ledger_hash: str) -> str:
    """Reject hashes that are empty or could escape the cache directory."""
    if not isinstance(ledger_hash, str) or not LEDGER_HASH_PATTERN.match(ledger_hash):
        raise InvalidInputError(f"Invalid ledger hash: {ledger_hash!r}")
    return ledger_hash


def _to_decimal(value, ledger_hash: str, public_key: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ParseError(ledger_hash, f"missing or invalid balance for {public_key}")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ParseError(ledger_hash, f"invalid balance {value!r} for {public_key}")
    if not amount.is_finite() or amount < 0:
        raise ParseError(ledger_hash, f"invalid balance {value!r} for {public_key}")
    return amount


def parse_ledger(data: Union[bytes, str], ledger_hash: str) -> Tuple[Account, ...]:
    """
    Parse staking ledger JSON into Account records.

    Args:
        data: JSON array of {pk, balance, delegate} objects
        ledger_hash: Hash being parsed, for error context

    Returns:
        Tuple of accounts in file order
    """
    try:
        records = json.loads(data, parse_float=Decimal, parse_int=Decimal)
    except (ValueError, UnicodeDecodeError) as e:
        raise ParseError(ledger_hash, f"invalid JSON ({e})") from e

    if not isinstance(records, list):
        raise ParseError(ledger_hash, "expected a JSON array of accounts")

    accounts = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise ParseError(ledger_hash, f"entry {index} is not an object")
        public_key = record.get("pk")
        if not isinstance(public_key, str) or not public_key:
            raise ParseError(ledger_hash, f"entry {index} has no public key")
        delegate = record.get("delegate") or public_key
        if not isinstance(delegate, str):
            raise ParseError(ledger_hash, f"entry {index} has an invalid delegate")
        balance = _to_decimal(record.get("balance"), ledger_hash, public_key)
        accounts.append(Account(public_key, balance, delegate))

    return tuple(accounts)


def extract_ledger_json(archive: bytes, ledger_hash: str) -> bytes:
    """Pull the ledger JSON matching the hash out of a compressed tar archive."""
    try:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r:*") as tar:
            for member in tar.getmembers():
                if member.isfile() and ledger_hash in member.name:
                    extracted = tar.extractfile(member)
                    if extracted is not None:
                        return extracted.read()
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ParseError(ledger_hash, f"corrupt archive ({e})") from e
    raise ParseError(ledger_hash, "archive does not contain the ledger")


class LedgerLoader:
    """
    Hash-addressed ledger cache backed by an object store.
    """

    def __init__(
        self,
        provider: StorageProvider,
        bucket_name: str,
        storage_path: Union[str, Path],
        max_retries: int = 3,
        retry_backoff: float = 1.0,
    ):
        """
        Initialize the loader.

        Args:
            provider: Configured storage provider
            bucket_name: Bucket holding the ledger objects
            storage_path: Local cache directory
            max_retries: Download attempts per hash before giving up
            retry_backoff: Base delay in seconds for exponential backoff
        """
        if max_retries < 1:
            raise InvalidInputError("max_retries must be at least 1")
        self.provider = provider
        self.bucket_name = bucket_name
        self.storage_path = Path(storage_path)
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

        self._lock = threading.RLock()
        self._ledgers: Dict[str, Tuple[Account, ...]] = {}
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, Future] = {}
        self._threads: List[threading.Thread] = []

    def cache_path(self, ledger_hash: str) -> Path:
        return self.storage_path / f"{ledger_hash}.json"

    def cache_entries(self) -> List[CacheEntry]:
        with self._lock:
            return list(self._entries.values())

    def load(
        self, ledger_hash: str, timeout: Optional[float] = None
    ) -> Tuple[Account, ...]:
        """
        Return the parsed accounts for a ledger hash.

        A ledger already in the disk cache is read in the calling thread. A
        missing one is downloaded on a thread of its own, so loads of
        different hashes never wait on each other.

        Args:
            ledger_hash: Content address of the staking ledger
            timeout: Seconds to wait for an in-flight download. When it expires
                this caller gets TimeoutError, the download keeps running.

        Returns:
            Tuple of Account records
        """
        validate_ledger_hash(ledger_hash)

        owner = False
        with self._lock:
            accounts = self._ledgers.get(ledger_hash)
            if accounts is not None:
                return accounts
            future = self._inflight.get(ledger_hash)
            if future is None:
                future = self._track(ledger_hash)
                owner = True
            else:
                logger.debug(f"Joining in-flight load of ledger {ledger_hash}")

        if owner:
            if self.cache_path(ledger_hash).exists():
                self._complete(future, self._read_cached, ledger_hash)
            else:
                self._start_download(future, ledger_hash)

        return future.result(timeout=timeout)

    def _track(self, ledger_hash: str) -> Future:
        future: Future = Future()
        future.set_running_or_notify_cancel()
        self._inflight[ledger_hash] = future
        future.add_done_callback(lambda done, h=ledger_hash: self._resolve(h, done))
        return future

    def _start_download(self, future: Future, ledger_hash: str):
        thread = threading.Thread(
            target=self._complete,
            args=(future, self._fetch, ledger_hash),
            name=f"ledger-download-{ledger_hash[:12]}",
            daemon=True,
        )
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    @staticmethod
    def _complete(future: Future, load_fn, ledger_hash: str):
        try:
            future.set_result(load_fn(ledger_hash))
        except BaseException as e:  # every waiter re-raises it from the future
            future.set_exception(e)

    def _resolve(self, ledger_hash: str, future: Future):
        with self._lock:
            if not future.cancelled() and future.exception() is None:
                self._ledgers[ledger_hash] = future.result()
                self._entries[ledger_hash] = CacheEntry(
                    ledger_hash, self.cache_path(ledger_hash)
                )
            self._inflight.pop(ledger_hash, None)

    def _read_cached(self, ledger_hash: str) -> Tuple[Account, ...]:
        path = self.cache_path(ledger_hash)
        logger.debug(f"Ledger {ledger_hash} found in cache at {path}")
        return parse_ledger(path.read_bytes(), ledger_hash)

    def _fetch(self, ledger_hash: str) -> Tuple[Account, ...]:
        path = self.cache_path(ledger_hash)
        raw = self._download_with_retry(ledger_hash)
        accounts = parse_ledger(raw, ledger_hash)
        self._persist(path, raw)
        logger.info(f"Cached ledger {ledger_hash} ({len(accounts)} accounts) at {path}")
        return accounts

    def _download_with_retry(self, ledger_hash: str) -> bytes:
        for attempt in range(self.max_retries):
            try:
                return self._download(ledger_hash)
            except LedgerNotFoundError:
                raise
            except StorageError as e:
                if attempt < self.max_retries - 1:
                    wait_time = self.retry_backoff * (2**attempt) + random.uniform(
                        0, self.retry_backoff / 2
                    )  # nosec B311
                    logger.warning(
                        f"Ledger {ledger_hash} download failed, retrying in "
                        f"{wait_time:.2f}s (attempt {attempt + 1}/{self.max_retries}): {e}"
                    )
                    time.sleep(wait_time)
                    continue
                logger.error(
                    f"Ledger {ledger_hash} download failed after {self.max_retries} attempts: {e}"
                )
                raise
        raise AssertionError("unreachable")

    def _download(self, ledger_hash: str) -> bytes:
        provider = self.provider
        keys = provider.list_objects(self.bucket_name)
        key = next((k for k in keys if ledger_hash in k), None)
        if key is None:
            raise LedgerNotFoundError(provider.provider_name, ledger_hash)

        logger.info(f"Downloading ledger {ledger_hash} from {provider.provider_name}: {key}")
        data = provider.get_object(self.bucket_name, key)

        if provider.archive_format is ArchiveFormat.TAR_GZ:
            return extract_ledger_json(data, ledger_hash)
        return data

    def _persist(self, path: Path, data: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def close(self):
        """Wait for in-flight downloads to finish."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
