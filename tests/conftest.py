from __future__ import annotations

import pytest

from src.services.call_log import InMemoryCallLogStore
from tests.fakes import RecordingSleep


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def call_log() -> InMemoryCallLogStore:
    return InMemoryCallLogStore()
