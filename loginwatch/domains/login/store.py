"""Session store: append-only login history queried by the detectors.

``SqlSessionStore`` is the production backend (one short-lived AsyncSession per
call). ``InMemorySessionStore`` keeps the same contract in process memory for
single-node deployments and tests. Both serialise writes per user while letting
unrelated users proceed concurrently.
"""

import asyncio
import weakref
from collections import defaultdict
from datetime import datetime
from typing import Protocol

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loginwatch.db.models import SecuritySettingDB, SessionRecordDB
from loginwatch.shared.errors import PersistenceError

from .config import MappingSecuritySettings
from .models import SessionRecord

logger = structlog.get_logger()


class SessionStore(Protocol):
    async def add(self, record: SessionRecord) -> SessionRecord: ...

    async def latest_with_other_coordinates(
        self, user_id: str, latitude: float, longitude: float
    ) -> SessionRecord | None: ...

    async def has_fingerprint(self, user_id: str, device_fingerprint: str) -> bool: ...

    async def latest_active_for_ip(self, user_id: str, ip_address: str) -> SessionRecord | None: ...

    async def count_for_ip_since(self, user_id: str, ip_address: str, since: datetime) -> int: ...

    async def count_active(self, user_id: str) -> int: ...

    async def touch_activity(self, user_id: str, ip_address: str, at: datetime) -> bool: ...

    async def deactivate(
        self, user_id: str, at: datetime, session_token_hash: str | None = None
    ) -> int: ...

    async def list_for_user(self, user_id: str) -> list[SessionRecord]: ...


class UserLocks:
    """One asyncio.Lock per user id, released for GC once nobody holds it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def for_user(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock


class InMemorySessionStore:
    def __init__(self) -> None:
        self._records: dict[str, list[SessionRecord]] = defaultdict(list)
        self._locks = UserLocks()
        self._next_id = 1

    async def add(self, record: SessionRecord) -> SessionRecord:
        async with self._locks.for_user(record.user_id):
            stored = record.model_copy(update={"id": self._next_id})
            self._next_id += 1
            self._records[record.user_id].append(stored)
            return stored.model_copy()

    def _by_recency(self, user_id: str) -> list[SessionRecord]:
        return sorted(self._records.get(user_id, []), key=lambda r: r.login_time, reverse=True)

    async def latest_with_other_coordinates(
        self, user_id: str, latitude: float, longitude: float
    ) -> SessionRecord | None:
        for record in self._by_recency(user_id):
            if record.latitude is None or record.longitude is None:
                continue
            if (record.latitude, record.longitude) != (latitude, longitude):
                return record.model_copy()
        return None

    async def has_fingerprint(self, user_id: str, device_fingerprint: str) -> bool:
        return any(
            r.device_fingerprint == device_fingerprint for r in self._records.get(user_id, [])
        )

    async def latest_active_for_ip(self, user_id: str, ip_address: str) -> SessionRecord | None:
        for record in self._by_recency(user_id):
            if record.is_active and record.ip_address == ip_address:
                return record.model_copy()
        return None

    async def count_for_ip_since(self, user_id: str, ip_address: str, since: datetime) -> int:
        return sum(
            1
            for r in self._records.get(user_id, [])
            if r.ip_address == ip_address and r.login_time >= since
        )

    async def count_active(self, user_id: str) -> int:
        return sum(1 for r in self._records.get(user_id, []) if r.is_active)

    async def touch_activity(self, user_id: str, ip_address: str, at: datetime) -> bool:
        async with self._locks.for_user(user_id):
            for record in self._by_recency(user_id):
                if record.is_active and record.ip_address == ip_address:
                    record.last_activity = at
                    return True
            return False

    async def deactivate(
        self, user_id: str, at: datetime, session_token_hash: str | None = None
    ) -> int:
        async with self._locks.for_user(user_id):
            count = 0
            for record in self._records.get(user_id, []):
                if not record.is_active:
                    continue
                if session_token_hash not in (None, record.session_token_hash):
                    continue
                record.is_active = False
                record.logout_time = at
                count += 1
            return count

    async def list_for_user(self, user_id: str) -> list[SessionRecord]:
        return [r.model_copy() for r in self._by_recency(user_id)]


class SqlSessionStore:
    """PostgreSQL-backed store over the ``user_login_logs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._locks = UserLocks()

    async def add(self, record: SessionRecord) -> SessionRecord:
        async with self._locks.for_user(record.user_id):
            async with self._session_factory() as session:
                row = SessionRecordDB(**record.model_dump(exclude={"id"}))
                session.add(row)
                try:
                    await session.flush()
                    stored = record.model_copy(update={"id": row.id})
                    await session.commit()
                except SQLAlchemyError as exc:
                    raise PersistenceError(f"could not store session for {record.user_id}") from exc
        return stored

    async def latest_with_other_coordinates(
        self, user_id: str, latitude: float, longitude: float
    ) -> SessionRecord | None:
        stmt = (
            select(SessionRecordDB)
            .where(
                SessionRecordDB.user_id == user_id,
                SessionRecordDB.latitude.isnot(None),
                SessionRecordDB.longitude.isnot(None),
                or_(SessionRecordDB.latitude != latitude, SessionRecordDB.longitude != longitude),
            )
            .order_by(SessionRecordDB.login_time.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
        return SessionRecord.model_validate(row) if row is not None else None

    async def has_fingerprint(self, user_id: str, device_fingerprint: str) -> bool:
        stmt = (
            select(SessionRecordDB.id)
            .where(
                SessionRecordDB.user_id == user_id,
                SessionRecordDB.device_fingerprint == device_fingerprint,
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.first() is not None

    async def latest_active_for_ip(self, user_id: str, ip_address: str) -> SessionRecord | None:
        async with self._session_factory() as session:
            row = await self._latest_active_row(session, user_id, ip_address)
        return SessionRecord.model_validate(row) if row is not None else None

    async def count_for_ip_since(self, user_id: str, ip_address: str, since: datetime) -> int:
        stmt = select(func.count()).select_from(SessionRecordDB).where(
            SessionRecordDB.user_id == user_id,
            SessionRecordDB.ip_address == ip_address,
            SessionRecordDB.login_time >= since,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def count_active(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(SessionRecordDB).where(
            SessionRecordDB.user_id == user_id,
            SessionRecordDB.is_active.is_(True),
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def touch_activity(self, user_id: str, ip_address: str, at: datetime) -> bool:
        async with self._locks.for_user(user_id):
            async with self._session_factory() as session:
                row = await self._latest_active_row(session, user_id, ip_address)
                if row is None:
                    return False
                row.last_activity = at
                await session.commit()
                return True

    async def deactivate(
        self, user_id: str, at: datetime, session_token_hash: str | None = None
    ) -> int:
        stmt = update(SessionRecordDB).where(
            SessionRecordDB.user_id == user_id,
            SessionRecordDB.is_active.is_(True),
        )
        if session_token_hash is not None:
            stmt = stmt.where(SessionRecordDB.session_token_hash == session_token_hash)
        stmt = stmt.values(is_active=False, logout_time=at)

        async with self._locks.for_user(user_id):
            async with self._session_factory() as session:
                try:
                    result = await session.execute(stmt)
                    await session.commit()
                except SQLAlchemyError as exc:
                    raise PersistenceError(f"could not deactivate sessions for {user_id}") from exc
                return result.rowcount or 0

    async def list_for_user(self, user_id: str) -> list[SessionRecord]:
        stmt = (
            select(SessionRecordDB)
            .where(SessionRecordDB.user_id == user_id)
            .order_by(SessionRecordDB.login_time.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [SessionRecord.model_validate(row) for row in rows]

    @staticmethod
    async def _latest_active_row(
        session: AsyncSession, user_id: str, ip_address: str
    ) -> SessionRecordDB | None:
        stmt = (
            select(SessionRecordDB)
            .where(
                SessionRecordDB.user_id == user_id,
                SessionRecordDB.ip_address == ip_address,
                SessionRecordDB.is_active.is_(True),
            )
            .order_by(SessionRecordDB.login_time.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()


class SqlSecuritySettings(MappingSecuritySettings):
    """Security settings over the ``security_settings`` table.

    Rows override ``fallback`` (usually environment variables). ``refresh``
    re-reads the table, so edits land on the next config reload.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fallback: MappingSecuritySettings | None = None,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._fallback = fallback

    async def refresh(self) -> None:
        stmt = select(SecuritySettingDB.setting_key, SecuritySettingDB.setting_value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = {key.strip().lower(): value for key, value in result.all()}

        values: dict[str, object] = {}
        if self._fallback is not None:
            await self._fallback.refresh()
            values.update(self._fallback.as_dict())
        values.update(rows)
        self._values = values
        logger.debug("security_settings_loaded", keys=len(rows))
