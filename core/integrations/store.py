"""
Connection Store: durable per-user Connection records.

Each user is one partition holding integrationId -> Connection. Every
read-modify-write of a partition runs under that partition's asyncio.Lock,
so concurrent saves for the same user are serialized; different users
never contend.

Backends:
- FileConnectionStore: one JSON document per user, atomic replace on write
- SqlConnectionStore: async SQLAlchemy, unique (user_id, integration_id)
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
import asyncio
import hashlib
import json
import logging
import os
import re
import tempfile

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from core.database import session_scope
from core.errors import StorageError
from core.integrations.models import (
    Connection,
    ConnectionMetadata,
    ConnectionStatus,
    EncryptedCredential,
    utcnow,
)
from core.models.connection import IntegrationConnection

logger = logging.getLogger(__name__)


class PartitionLocks:
    """One asyncio.Lock per partition key, created on first use."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def __call__(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


class ConnectionStore(ABC):
    """Persistence contract for Connection records."""

    def __init__(self):
        self._locks = PartitionLocks()

    async def save(self, connection: Connection) -> Connection:
        """Insert or replace the user's connection for one integration.

        A replaced connection keeps its original connected_at; updated_at
        is refreshed. Returns the connection as stored.
        """
        async with self._locks(connection.user_id):
            return await self._save(connection)

    async def get(self, user_id: str, integration_id: str) -> Connection | None:
        return await self._get(user_id, integration_id)

    async def delete(self, user_id: str, integration_id: str) -> bool:
        async with self._locks(user_id):
            return await self._delete(user_id, integration_id)

    async def list_for_user(self, user_id: str) -> dict[str, Connection]:
        """All of a user's connections in one read."""
        return await self._list_for_user(user_id)

    async def set_status(
        self,
        user_id: str,
        integration_id: str,
        status: ConnectionStatus,
    ) -> Connection | None:
        async with self._locks(user_id):
            connection = await self._get(user_id, integration_id)
            if connection is None:
                return None
            connection.status = status
            return await self._save(connection)

    # --- backend hooks (called with the partition lock held where needed) ---

    @abstractmethod
    async def _save(self, connection: Connection) -> Connection: ...

    @abstractmethod
    async def _get(self, user_id: str, integration_id: str) -> Connection | None: ...

    @abstractmethod
    async def _delete(self, user_id: str, integration_id: str) -> bool: ...

    @abstractmethod
    async def _list_for_user(self, user_id: str) -> dict[str, Connection]: ...


# ---------------------------------------------------------------------------
# File backend
# ---------------------------------------------------------------------------

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_@-][A-Za-z0-9._@-]{0,127}$")


class FileConnectionStore(ConnectionStore):
    """One `<user>.json` file per user under data_dir."""

    def __init__(self, data_dir: str | Path):
        super().__init__()
        self.data_dir = Path(data_dir)

    def partition_path(self, user_id: str) -> Path:
        if _SAFE_NAME.match(user_id):
            name = user_id
        else:
            name = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
        return self.data_dir / f"{name}.json"

    # --- blocking helpers (run in a worker thread) ---

    def _read_partition(self, user_id: str) -> dict[str, dict]:
        path = self.partition_path(user_id)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise StorageError(f"Could not read connections for user {user_id}", path=str(path)) from exc
        if not isinstance(data, dict):
            raise StorageError(f"Connections file for user {user_id} is not an object", path=str(path))
        return data

    def _write_partition(self, user_id: str, data: dict[str, dict]) -> None:
        path = self.partition_path(user_id)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{path.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, indent=2)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StorageError(f"Could not write connections for user {user_id}", path=str(path)) from exc

    # --- hooks ---

    async def _save(self, connection: Connection) -> Connection:
        partition = await asyncio.to_thread(self._read_partition, connection.user_id)
        existing = partition.get(connection.integration_id)
        if existing:
            connection.connected_at = Connection.from_dict(existing).connected_at
        connection.updated_at = utcnow()
        partition[connection.integration_id] = connection.to_dict()
        await asyncio.to_thread(self._write_partition, connection.user_id, partition)
        return connection

    async def _get(self, user_id: str, integration_id: str) -> Connection | None:
        partition = await asyncio.to_thread(self._read_partition, user_id)
        record = partition.get(integration_id)
        return Connection.from_dict(record) if record else None

    async def _delete(self, user_id: str, integration_id: str) -> bool:
        partition = await asyncio.to_thread(self._read_partition, user_id)
        if integration_id not in partition:
            return False
        del partition[integration_id]
        await asyncio.to_thread(self._write_partition, user_id, partition)
        return True

    async def _list_for_user(self, user_id: str) -> dict[str, Connection]:
        partition = await asyncio.to_thread(self._read_partition, user_id)
        return {key: Connection.from_dict(value) for key, value in partition.items()}


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------

def _aware(value: datetime | None) -> datetime:
    if value is None:
        return utcnow()
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _row_to_connection(row: IntegrationConnection) -> Connection:
    return Connection(
        user_id=row.user_id,
        integration_id=row.integration_id,
        integration_name=row.integration_name,
        credentials=EncryptedCredential(encrypted=row.encrypted, iv=row.iv, algorithm=row.algorithm),
        status=ConnectionStatus(row.status),
        connected_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        metadata=ConnectionMetadata.from_dict(row.connection_metadata),
    )


class SqlConnectionStore(ConnectionStore):
    """Connections in the `integration_connections` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        super().__init__()
        self.session_factory = session_factory

    def _select(self, user_id: str, integration_id: str):
        return select(IntegrationConnection).where(
            IntegrationConnection.user_id == user_id,
            IntegrationConnection.integration_id == integration_id,
        )

    async def _save(self, connection: Connection) -> Connection:
        now = utcnow()
        try:
            async with session_scope(self.session_factory) as session:
                result = await session.execute(self._select(connection.user_id, connection.integration_id))
                row = result.scalar_one_or_none()
                if row is None:
                    row = IntegrationConnection(
                        user_id=connection.user_id,
                        integration_id=connection.integration_id,
                        created_at=connection.connected_at,
                    )
                    session.add(row)
                else:
                    connection.connected_at = _aware(row.created_at)
                row.integration_name = connection.integration_name
                row.status = connection.status.value
                row.encrypted = connection.credentials.encrypted
                row.iv = connection.credentials.iv
                row.algorithm = connection.credentials.algorithm
                row.connection_metadata = connection.metadata.to_dict()
                row.updated_at = now
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not save connection for user {connection.user_id}") from exc
        connection.updated_at = now
        return connection

    async def _get(self, user_id: str, integration_id: str) -> Connection | None:
        try:
            async with session_scope(self.session_factory) as session:
                result = await session.execute(self._select(user_id, integration_id))
                row = result.scalar_one_or_none()
                return _row_to_connection(row) if row else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not read connection for user {user_id}") from exc

    async def _delete(self, user_id: str, integration_id: str) -> bool:
        try:
            async with session_scope(self.session_factory) as session:
                result = await session.execute(
                    delete(IntegrationConnection).where(
                        IntegrationConnection.user_id == user_id,
                        IntegrationConnection.integration_id == integration_id,
                    )
                )
                return (result.rowcount or 0) > 0
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not delete connection for user {user_id}") from exc

    async def _list_for_user(self, user_id: str) -> dict[str, Connection]:
        try:
            async with session_scope(self.session_factory) as session:
                result = await session.execute(
                    select(IntegrationConnection)
                    .where(IntegrationConnection.user_id == user_id)
                    .order_by(IntegrationConnection.integration_id)
                )
                return {row.integration_id: _row_to_connection(row) for row in result.scalars().all()}
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not list connections for user {user_id}") from exc
