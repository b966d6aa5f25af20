"""Shared test fixtures."""

from __future__ import annotations

import pytest

from take_catcher.core.clock import ManualClock
from take_catcher.core.scheduler import ManualScheduler


@pytest.fixture(scope="session")
def qapp():
    """Provide a QCoreApplication instance for the entire test session."""
    from PyQt6.QtCore import QCoreApplication

    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


@pytest.fixture
def clock():
    return ManualClock(epoch_ms=1_700_000_000_000.0)


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)
