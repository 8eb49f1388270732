"""Shared fixtures for the PulseCore test suite."""

import pytest

from pulsecore.core.database import HistoryStore


@pytest.fixture
def store(tmp_path):
    return HistoryStore(str(tmp_path / "history.db"))
