"""Global pytest fixtures.
 - Sets env vars before any harvester module reads settings (no file logs, no events, no delays).
 - Exposes the in-memory doubles from `fakes.py` as fixtures.
"""
from __future__ import annotations
import os

# settings are frozen at import time, so these must be set before collection
os.environ.setdefault('HARVESTER_DISABLE_FILE_LOGS', '1')
os.environ.setdefault('HARVESTER_DISABLE_EVENTS', '1')
os.environ.setdefault('HARVESTER_DELAY_SCALE', '0')
os.environ.setdefault('HARVESTER_RETRY_DELAY', '0')

import pytest

from harvester.tests.fakes import FakeSession, MemoryStore


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def memory_store():
    return MemoryStore()
