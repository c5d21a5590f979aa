"""Shared fixtures: default configuration, an empty store and an in-memory audit trail."""

from __future__ import annotations

import pytest

from ledger_recon.audit import AuditLogger, InMemoryAuditSink
from ledger_recon.config import ReconConfig, get_default_config
from ledger_recon.store import InMemoryTransactionStore


@pytest.fixture
def config() -> ReconConfig:
    return ReconConfig(**get_default_config())


@pytest.fixture
def store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def audit(config: ReconConfig, audit_sink: InMemoryAuditSink) -> AuditLogger:
    # Fallback is in-memory too so tests never write audit records to stderr
    return AuditLogger(audit_sink, fallback=InMemoryAuditSink(), config=config.audit)
