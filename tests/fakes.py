"""
Test doubles shared across the test suite.
"""

import io
import tarfile
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import base58

from mina_ocv.data.storage import ArchiveFormat, StorageObject, StorageProvider
from mina_ocv.data.votes import RawTransaction
from mina_ocv.errors import InvalidInputError, StorageError

BASE_TIME = datetime(2024, 5, 1, tzinfo=timezone.utc)


class FakeProvider(StorageProvider):
    """In-memory provider that counts calls and can block or fail downloads."""

    provider_name = "Fake Storage"

    def __init__(
        self,
        objects: Optional[Dict[str, bytes]] = None,
        archive_format: ArchiveFormat = ArchiveFormat.JSON,
    ):
        self.objects = dict(objects or {})
        self.archive_format = archive_format
        self.list_calls = 0
        self.get_calls: List[str] = []
        self.failures_remaining = 0
        self.gates: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def describe_objects(self, bucket, prefix=None):
        with self._lock:
            self.list_calls += 1
        return [
            StorageObject(key, len(data), self.provider_name)
            for key, data in self.objects.items()
            if prefix is None or key.startswith(prefix)
        ]

    def get_object(self, bucket, key):
        gate = self.gates.get(key)
        if gate is not None:
            gate.wait(timeout=5)
        with self._lock:
            self.get_calls.append(key)
            if self.failures_remaining > 0:
                self.failures_remaining -= 1
                raise StorageError(self.provider_name, "get_object", ConnectionError("reset"))
        return self.objects[key]


def encode_memo(text: str) -> str:
    """Encode text the way the chain stores memos (32 byte zero padded payload)."""
    payload = text.encode("utf-8")
    if len(payload) > 32:
        raise InvalidInputError("Memo text must be at most 32 bytes")
    raw = bytes([0x14, 0x01, len(payload)]) + payload.ljust(32, b"\x00")
    return base58.b58encode_check(raw).decode("ascii")


def make_archive(name: str, data: bytes) -> bytes:
    """A .tar.gz holding one file."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        info = tarfile.TarInfo(name=name)
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def make_tx(
    account: str,
    memo_text: Optional[str],
    height: int = 100,
    nonce: int = 0,
    canonical: bool = True,
    receiver: Optional[str] = None,
    kind: str = "PAYMENT",
    minutes: int = 10,
    raw_memo: Optional[str] = None,
) -> RawTransaction:
    """A transaction whose memo encodes the given text."""
    memo = raw_memo if raw_memo is not None else encode_memo(memo_text or "")
    return RawTransaction(
        block_height=height,
        block_canonical=canonical,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        nonce=nonce,
        source=account,
        receiver=receiver or account,
        memo=memo,
        kind=kind,
    )
