"""
Unit tests for ledger parsing and the hash-addressed ledger cache.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from decimal import Decimal

import pytest

from fakes import FakeProvider, make_archive
from mina_ocv.data.ledger import (
    Account,
    LedgerLoader,
    extract_ledger_json,
    parse_ledger,
    validate_ledger_hash,
)
from mina_ocv.data.storage import ArchiveFormat
from mina_ocv.errors import InvalidInputError, LedgerNotFoundError, ParseError, StorageError

HASH = "jxQXzUkst2L9Ma9g9YQ3kfpgB5v5Znr1vrYb1mupakc5y7T89H8"


class TestParseLedger:
    @pytest.mark.unit
    def test_parses_accounts(self, sample_ledger_json, sample_accounts):
        assert parse_ledger(sample_ledger_json, HASH) == sample_accounts

    @pytest.mark.unit
    def test_numeric_balances_stay_exact(self):
        accounts = parse_ledger(b'[{"pk": "A", "balance": 0.1}]', HASH)
        assert accounts[0].balance == Decimal("0.1")
        assert accounts[0].delegate == "A"

    @pytest.mark.unit
    def test_empty_ledger(self):
        assert parse_ledger(b"[]", HASH) == ()

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "data",
        [
            b"not json",
            b'{"pk": "A"}',
            b"[1, 2]",
            b'[{"balance": "1"}]',
            b'[{"pk": "A", "balance": "-5"}]',
            b'[{"pk": "A", "balance": "lots"}]',
            b'[{"pk": "A", "balance": true}]',
            b'[{"pk": "A"}]',
            b'[{"pk": "A", "balance": Infinity}]',
        ],
    )
    def test_malformed_ledgers(self, data):
        with pytest.raises(ParseError) as exc_info:
            parse_ledger(data, HASH)
        assert exc_info.value.ledger_hash == HASH


@pytest.mark.unit
@pytest.mark.parametrize("value", ["", "../etc", "abc/def", "a.json", None])
def test_invalid_ledger_hash(value):
    with pytest.raises(InvalidInputError):
        validate_ledger_hash(value)


@pytest.mark.unit
def test_extract_ledger_json(sample_ledger_json):
    archive = make_archive(f"staking-1-{HASH}-2.json", sample_ledger_json)
    assert extract_ledger_json(archive, HASH) == sample_ledger_json

    with pytest.raises(ParseError):
        extract_ledger_json(archive, "otherhash")
    with pytest.raises(ParseError):
        extract_ledger_json(b"not an archive", HASH)


class TestLedgerLoader:
    @pytest.mark.unit
    def test_loads_and_caches(self, fake_provider, loader, sample_ledger_json, sample_accounts):
        fake_provider.objects[f"{HASH}.json"] = sample_ledger_json

        assert loader.load(HASH) == sample_accounts
        assert loader.load(HASH) == sample_accounts
        assert fake_provider.get_calls == [f"{HASH}.json"]
        assert loader.cache_path(HASH).read_bytes() == sample_ledger_json
        assert [e.ledger_hash for e in loader.cache_entries()] == [HASH]

    @pytest.mark.unit
    def test_disk_cache_survives_new_loader(self, fake_provider, tmp_path, sample_ledger_json):
        fake_provider.objects[f"{HASH}.json"] = sample_ledger_json
        with LedgerLoader(fake_provider, "ledgers", tmp_path, retry_backoff=0) as first:
            first.load(HASH)

        with LedgerLoader(fake_provider, "ledgers", tmp_path, retry_backoff=0) as second:
            assert len(second.load(HASH)) == 3
        assert fake_provider.list_calls == 1
        assert len(fake_provider.get_calls) == 1

    @pytest.mark.unit
    def test_tar_gz_archives_are_extracted(self, tmp_path, sample_ledger_json, sample_accounts):
        provider = FakeProvider(
            {f"mainnet/{HASH}.tar.gz": make_archive(f"{HASH}.json", sample_ledger_json)},
            archive_format=ArchiveFormat.TAR_GZ,
        )
        with LedgerLoader(provider, "ledgers", tmp_path, retry_backoff=0) as loader:
            assert loader.load(HASH) == sample_accounts
            assert loader.cache_path(HASH).read_bytes() == sample_ledger_json

    @pytest.mark.unit
    def test_missing_ledger_is_not_retried(self, fake_provider, loader):
        fake_provider.objects["other.json"] = b"[]"

        with pytest.raises(LedgerNotFoundError) as exc_info:
            loader.load(HASH)
        assert exc_info.value.ledger_hash == HASH
        assert fake_provider.list_calls == 1
        assert fake_provider.get_calls == []

    @pytest.mark.unit
    def test_parse_failure_leaves_no_cache_file(self, fake_provider, loader):
        fake_provider.objects[f"{HASH}.json"] = b"{broken"

        with pytest.raises(ParseError):
            loader.load(HASH)
        assert not loader.cache_path(HASH).exists()
        assert not list(loader.storage_path.glob("*.tmp"))
        assert loader.cache_entries() == []

        # Failures are not memoized
        with pytest.raises(ParseError):
            loader.load(HASH)
        assert len(fake_provider.get_calls) == 2

    @pytest.mark.unit
    def test_transient_failures_are_retried(self, fake_provider, loader, sample_ledger_json):
        fake_provider.objects[f"{HASH}.json"] = sample_ledger_json
        fake_provider.failures_remaining = 2

        assert len(loader.load(HASH)) == 3
        assert len(fake_provider.get_calls) == 3

    @pytest.mark.unit
    def test_gives_up_after_max_retries(self, fake_provider, loader, sample_ledger_json):
        fake_provider.objects[f"{HASH}.json"] = sample_ledger_json
        fake_provider.failures_remaining = 10

        with pytest.raises(StorageError) as exc_info:
            loader.load(HASH)
        assert exc_info.value.provider == "Fake Storage"
        assert len(fake_provider.get_calls) == loader.max_retries

    @pytest.mark.unit
    def test_invalid_hash_rejected_before_io(self, fake_provider, loader):
        with pytest.raises(InvalidInputError):
            loader.load("../../etc/passwd")
        assert fake_provider.list_calls == 0

    @pytest.mark.unit
    def test_max_retries_must_be_positive(self, fake_provider, tmp_path):
        with pytest.raises(InvalidInputError):
            LedgerLoader(fake_provider, "ledgers", tmp_path, max_retries=0)


class TestConcurrentLoads:
    @pytest.mark.unit
    @pytest.mark.invariant
    def test_concurrent_requests_share_one_download(
        self, fake_provider, loader, sample_ledger_json, sample_accounts
    ):
        key = f"{HASH}.json"
        fake_provider.objects[key] = sample_ledger_json
        gate = threading.Event()
        fake_provider.gates[key] = gate

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(loader.load, HASH) for _ in range(8)]
            time.sleep(0.1)
            gate.set()
            results = [f.result(timeout=5) for f in futures]

        assert all(r == sample_accounts for r in results)
        assert fake_provider.get_calls == [key]

    @pytest.mark.unit
    def test_timed_out_caller_does_not_cancel_download(
        self, fake_provider, loader, sample_ledger_json
    ):
        key = f"{HASH}.json"
        fake_provider.objects[key] = sample_ledger_json
        gate = threading.Event()
        fake_provider.gates[key] = gate

        with pytest.raises(FutureTimeoutError):
            loader.load(HASH, timeout=0.05)

        gate.set()
        assert len(loader.load(HASH, timeout=5)) == 3
        assert fake_provider.get_calls == [key]

    @pytest.mark.unit
    def test_distinct_hashes_download_in_parallel(self, fake_provider, loader):
        slow, fast = "slowhash", "fasthash"
        fake_provider.objects[f"{slow}.json"] = b'[{"pk": "S", "balance": "1"}]'
        fake_provider.objects[f"{fast}.json"] = b'[{"pk": "F", "balance": "2"}]'
        gate = threading.Event()
        fake_provider.gates[f"{slow}.json"] = gate

        with ThreadPoolExecutor(max_workers=1) as pool:
            pending = pool.submit(loader.load, slow)
            # Completes while the slow download is still blocked
            assert loader.load(fast, timeout=2) == (Account("F", Decimal("2"), "F"),)
            assert not pending.done()
            gate.set()
            assert pending.result(timeout=5) == (Account("S", Decimal("1"), "S"),)

    @pytest.mark.unit
    def test_cached_hash_not_blocked_by_pending_downloads(self, fake_provider, loader):
        gate = threading.Event()
        slow_hashes = [f"slow{i}" for i in range(6)]
        for ledger_hash in slow_hashes:
            key = f"{ledger_hash}.json"
            fake_provider.objects[key] = b"[]"
            fake_provider.gates[key] = gate

        loader.storage_path.mkdir(parents=True, exist_ok=True)
        loader.cache_path("cached").write_bytes(b'[{"pk": "K", "balance": "3"}]')

        with ThreadPoolExecutor(max_workers=len(slow_hashes)) as pool:
            pending = [pool.submit(loader.load, h) for h in slow_hashes]
            time.sleep(0.1)
            assert loader.load("cached", timeout=1) == (Account("K", Decimal("3"), "K"),)
            assert not any(f.done() for f in pending)
            gate.set()
            assert all(f.result(timeout=5) == () for f in pending)
