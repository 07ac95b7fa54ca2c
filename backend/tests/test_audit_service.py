"""Tests for the hash-chained lifecycle audit trail."""

from types import SimpleNamespace

import pytest

from pipeline_analytics.services.audit_service import LifecycleAuditService


class _Result:
    def __init__(self, value):
        self.value = value

    def scalar(self):
        return self.value


class ChainSession:
    """Enough of AsyncSession for record(): statements are logged, rows kept in memory."""

    def __init__(self, dialect: str):
        self.dialect = dialect
        self.statements: list[str] = []
        self.added = []

    def get_bind(self):
        return SimpleNamespace(dialect=SimpleNamespace(name=self.dialect))

    async def execute(self, statement):
        self.statements.append(str(statement))
        return _Result(self.added[-1].current_hash if self.added else None)

    def add(self, entry):
        self.added.append(entry)

    async def flush(self):
        pass


@pytest.mark.asyncio
class TestRecord:
    async def test_postgres_append_takes_chain_lock_before_reading_head(self):
        session = ChainSession("postgresql")
        audit = LifecycleAuditService(session)

        await audit.record("proposed", optimization_id="OPT-1", pipeline_config_id="PIPE-1")

        assert "pg_advisory_xact_lock" in session.statements[0]
        assert "lifecycle_events" in session.statements[1]

    async def test_other_dialects_skip_the_lock(self):
        session = ChainSession("sqlite")
        audit = LifecycleAuditService(session)

        await audit.record("proposed", optimization_id="OPT-1", pipeline_config_id="PIPE-1")

        assert not any("pg_advisory_xact_lock" in s for s in session.statements)

    async def test_entries_chain_across_pipelines(self):
        session = ChainSession("postgresql")
        audit = LifecycleAuditService(session)

        first = await audit.record("applied", optimization_id="OPT-1", pipeline_config_id="PIPE-1")
        second = await audit.record("rejected", optimization_id="OPT-2", pipeline_config_id="PIPE-2")

        assert first.previous_hash is None
        assert second.previous_hash == first.current_hash
        assert second.current_hash != first.current_hash
