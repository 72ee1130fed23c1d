"""
Shared fixtures for the test suite.
"""

import pytest

from adaptive_forge.storage.repository import UsageTracker


@pytest.fixture
def usage_tracker():
    """Fresh usage ledger per test."""
    return UsageTracker(capacity=100)
