"""Shared fixtures for the schedule tests."""
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from cronograma.schedule.errors import PersistenceError
from cronograma.schedule.service import MemorySlotBackend
from cronograma.schedule.service.seed import default_seed
from cronograma.schedule.store import ScheduleStore


class FlakyBackend(MemorySlotBackend):
    """Memory backend whose next ``failures`` writes raise PersistenceError."""

    def __init__(self, failures: int = 0):
        super().__init__()
        self.failures = failures
        self.write_calls = 0

    def write(self, slot, document, verify):
        self.write_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError(f"simulated outage writing {slot}", slot=slot)
        return super().write(slot, document, verify)


@pytest.fixture
def seed():
    return default_seed()


@pytest.fixture
def store(seed):
    return ScheduleStore(draft=seed, published=seed)


@pytest.fixture
def flaky_backend():
    return FlakyBackend()
