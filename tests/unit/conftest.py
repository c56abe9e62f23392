from __future__ import annotations

import pytest

from fakes import FakeBroker, RecordingStore
from kats.sync.metrics import SyncMetrics


@pytest.fixture
def metrics() -> SyncMetrics:
    return SyncMetrics(namespace="test")


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()
