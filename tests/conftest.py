"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any ``admission`` import so the
settings object is built for tests: in-memory counter store, plain logs.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("ADMISSION_STORE_BACKEND", "memory")
os.environ.setdefault("ADMISSION_ENABLED", "true")
os.environ.setdefault("LOG_FORMAT", "plain")

from unittest.mock import Mock

import pytest

from admission.adapters.store.in_memory import InMemoryCounterStore
from admission.services.admission import AdmissionService, set_admission_service
from admission.services.decision_engine import AdmissionEngine
from admission.services.policies import DEFAULT_POLICIES, PolicyRegistry


@pytest.fixture
def clock() -> Mock:
    """Controllable time source; move time with ``clock.return_value += n``."""
    return Mock(return_value=1_000.0)


@pytest.fixture
def memory_store(clock: Mock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def engine(memory_store: InMemoryCounterStore, clock: Mock) -> AdmissionEngine:
    return AdmissionEngine(memory_store, clock=clock)


@pytest.fixture
def admission_service(engine: AdmissionEngine):
    """Install an in-memory admission service as the process-wide one."""
    service = AdmissionService(PolicyRegistry(DEFAULT_POLICIES), engine)
    set_admission_service(service)
    yield service
    set_admission_service(None)
