"""
Shared pytest configuration and fixtures for mina-ocv.

This module provides common test fixtures and utilities used across
all test modules.
"""

import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Add src (and the shared test doubles) to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeProvider  # noqa: E402
from mina_ocv.data.ledger import Account, LedgerLoader  # noqa: E402


@pytest.fixture
def sample_accounts():
    """A delegates to itself, B delegates to A, C to itself."""
    return (
        Account("A", Decimal("100"), "A"),
        Account("B", Decimal("50"), "A"),
        Account("C", Decimal("30"), "C"),
    )


@pytest.fixture
def sample_ledger_json():
    """Ledger JSON in the snapshot format, matching sample_accounts."""
    return (
        b'[{"pk": "A", "balance": "100", "delegate": "A"},'
        b' {"pk": "B", "balance": "50", "delegate": "A"},'
        b' {"pk": "C", "balance": "30"}]'
    )


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def loader(fake_provider, tmp_path):
    """Ledger loader over the fake provider with instant retries."""
    ledger_loader = LedgerLoader(
        fake_provider, "ledgers", tmp_path / "cache", retry_backoff=0.0
    )
    yield ledger_loader
    ledger_loader.close()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (medium speed)",
    )
    config.addinivalue_line(
        "markers",
        "golden: marks tests as golden dataset validation (hand-computed results)",
    )
    config.addinivalue_line(
        "markers", "invariant: marks tests as mathematical invariant validation"
    )
    config.addinivalue_line(
        "markers", "smoke: marks tests as smoke tests (basic functionality check)"
    )
