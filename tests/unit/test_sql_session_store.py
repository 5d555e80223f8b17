"""Unit tests for the SQL session store against a mocked AsyncSession."""

import asyncio
import uuid
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from loginwatch.db.models import SessionRecordDB
from loginwatch.domains.login.models import SessionRecord
from loginwatch.domains.login.config import EnvSecuritySettings, RiskConfigHolder
from loginwatch.domains.login.store import SqlSecuritySettings, SqlSessionStore
from loginwatch.shared.errors import PersistenceError

NOW = datetime(2026, 1, 15, 14, 0, 0, tzinfo=UTC)


def _record(user_id: str = "user-1") -> SessionRecord:
    return SessionRecord(
        user_id=user_id,
        session_token_hash=uuid.uuid4().hex,
        ip_address="8.8.8.8",
        device_fingerprint="a" * 64,
        login_time=NOW,
        last_activity=NOW,
    )


def _scalar_result(value):
    result = MagicMock()
    result.scalar_one.return_value = value
    return result


class TestSqlSessionStore:
    @pytest.mark.asyncio
    async def test_add_assigns_id(self, mock_session_factory, mock_db_session):
        def _assign_id():
            mock_db_session.add.call_args[0][0].id = 42

        mock_db_session.flush.side_effect = _assign_id
        stored = await SqlSessionStore(mock_session_factory).add(_record())

        row = mock_db_session.add.call_args[0][0]
        assert isinstance(row, SessionRecordDB)
        assert row.user_id == "user-1"
        assert stored.id == 42
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_count_active(self, mock_session_factory, mock_db_session):
        mock_db_session.execute.return_value = _scalar_result(3)
        assert await SqlSessionStore(mock_session_factory).count_active("user-1") == 3

    @pytest.mark.asyncio
    async def test_count_for_ip_since(self, mock_session_factory, mock_db_session):
        mock_db_session.execute.return_value = _scalar_result(11)
        store = SqlSessionStore(mock_session_factory)
        assert await store.count_for_ip_since("user-1", "8.8.8.8", NOW) == 11

    @pytest.mark.asyncio
    async def test_deactivate_returns_rowcount(self, mock_session_factory, mock_db_session):
        result = MagicMock()
        result.rowcount = 2
        mock_db_session.execute.return_value = result

        assert await SqlSessionStore(mock_session_factory).deactivate("user-1", NOW) == 2
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_has_fingerprint(self, mock_session_factory, mock_db_session):
        result = MagicMock()
        result.first.return_value = None
        mock_db_session.execute.return_value = result
        assert not await SqlSessionStore(mock_session_factory).has_fingerprint("user-1", "a" * 64)

    @pytest.mark.asyncio
    async def test_touch_activity_without_session(self, mock_session_factory, mock_db_session):
        result = MagicMock()
        result.scalars.return_value.first.return_value = None
        mock_db_session.execute.return_value = result

        store = SqlSessionStore(mock_session_factory)
        assert not await store.touch_activity("user-1", "8.8.8.8", NOW)
        mock_db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_error_propagates(self, mock_session_factory, mock_db_session):
        mock_db_session.execute.side_effect = ConnectionError("db down")
        with pytest.raises(ConnectionError):
            await SqlSessionStore(mock_session_factory).count_active("user-1")

    @pytest.mark.asyncio
    async def test_write_errors_become_persistence_errors(
        self, mock_session_factory, mock_db_session
    ):
        mock_db_session.flush.side_effect = OperationalError("INSERT", {}, Exception("gone"))
        with pytest.raises(PersistenceError):
            await SqlSessionStore(mock_session_factory).add(_record())
        mock_db_session.commit.assert_not_awaited()


class _SlowSession:
    """Session whose writes yield to the event loop and log when they start and end."""

    def __init__(self, log: list[tuple[str, str]]) -> None:
        self._log = log
        self._row = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def add(self, row) -> None:
        self._row = row

    async def _write(self, label: str) -> None:
        self._log.append(("start", label))
        await asyncio.sleep(0.01)
        self._log.append(("end", label))

    async def flush(self) -> None:
        await self._write(self._row.user_id)
        self._row.id = len(self._log)

    async def execute(self, stmt):
        await self._write("update")
        result = MagicMock()
        result.rowcount = 1
        return result

    async def commit(self) -> None:
        pass


class TestPerUserWriteLocks:
    @pytest.mark.asyncio
    async def test_same_user_writes_do_not_interleave(self):
        log: list[tuple[str, str]] = []
        store = SqlSessionStore(lambda: _SlowSession(log))

        await asyncio.gather(
            store.add(_record()),
            store.deactivate("user-1", NOW),
            store.add(_record()),
        )

        assert len(log) == 6
        for i in range(0, len(log), 2):
            assert log[i][0] == "start"
            assert log[i + 1] == ("end", log[i][1])

    @pytest.mark.asyncio
    async def test_other_users_not_blocked(self):
        log: list[tuple[str, str]] = []
        store = SqlSessionStore(lambda: _SlowSession(log))

        await asyncio.gather(store.add(_record("user-1")), store.add(_record("user-2")))

        assert log[:2] == [("start", "user-1"), ("start", "user-2")]
        assert {entry for entry in log[2:]} == {("end", "user-1"), ("end", "user-2")}


class TestSqlSecuritySettings:
    @pytest.mark.asyncio
    async def test_rows_override_fallback(self, mock_session_factory, mock_db_session, monkeypatch):
        monkeypatch.setenv("LOGINWATCH_BASE_RISK_SCORE", "12")
        monkeypatch.setenv("LOGINWATCH_NEW_DEVICE_RISK_SCORE", "18")
        result = MagicMock()
        result.all.return_value = [("BASE_RISK_SCORE", "30"), ("max_concurrent_sessions", "3")]
        mock_db_session.execute.return_value = result

        provider = SqlSecuritySettings(mock_session_factory, fallback=EnvSecuritySettings())
        await provider.refresh()

        assert provider.get_int("base_risk_score", 0) == 30
        assert provider.get_int("new_device_risk_score", 0) == 18
        assert provider.get_int("max_concurrent_sessions", 0) == 3

    @pytest.mark.asyncio
    async def test_holder_refresh_reads_table_again(self, mock_session_factory, mock_db_session):
        first, second = MagicMock(), MagicMock()
        first.all.return_value = [("base_risk_score", "10")]
        second.all.return_value = [("base_risk_score", "35")]
        mock_db_session.execute.side_effect = [first, second]

        holder = RiskConfigHolder(provider=SqlSecuritySettings(mock_session_factory))
        assert (await holder.refresh()).weights.base == 10
        refreshed = await holder.refresh()
        assert refreshed.weights.base == 35
        assert refreshed.version == 2

    @pytest.mark.asyncio
    async def test_database_error_propagates(self, mock_session_factory, mock_db_session):
        mock_db_session.execute.side_effect = ConnectionError("db down")
        holder = RiskConfigHolder(provider=SqlSecuritySettings(mock_session_factory))
        before = holder.current()
        with pytest.raises(ConnectionError):
            await holder.refresh()
        assert holder.current() is before
