"""Shared fakes and fixtures. No test talks to a real service."""

import pytest

from pocket.audit import AuditLogger
from pocket.services.storage import (
    InMemoryAuditStorage,
    InMemoryBankingStorage,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    InMemoryInsightsStorage,
    InMemoryProfileStorage,
)


@pytest.fixture
def expense_storage():
    return InMemoryExpenseStorage()


@pytest.fixture
def profile_storage():
    return InMemoryProfileStorage()


@pytest.fixture
def budget_storage():
    return InMemoryBudgetStorage()


@pytest.fixture
def banking_storage():
    return InMemoryBankingStorage()


@pytest.fixture
def insights_storage():
    return InMemoryInsightsStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)
