"""SQLAlchemy model for persisted integration connections.

One row per (user_id, integration_id); the unique constraint is what makes
"at most one connection per pair" hold across processes. created_at doubles as
the connection time and is preserved on reconnect.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import Base


class IntegrationConnection(Base):
    __tablename__ = "integration_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "integration_id", name="uq_connection_user_integration"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Partition key; "all of a user's connections" is one indexed read
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    integration_id: Mapped[str] = mapped_column(String(128), nullable=False)
    integration_name: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")

    # Encrypted credential triple; same field names as the file format
    encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    iv: Mapped[str] = mapped_column(String(64), nullable=False)
    algorithm: Mapped[str] = mapped_column(String(32), nullable=False)

    connection_metadata: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
