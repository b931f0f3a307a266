"""
Integration runtime wiring.

Builds the owned component graph from a HubConfig:

    registry ─┐
    vault ────┼──> ActionDispatcher
    probe ────┤
    store ────┘

Each call builds fresh, independent instances (no process-wide singletons).
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Iterable
import logging

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from core.config import HubConfig
from core.database import close_db, create_engine, create_session_factory, init_db
from core.errors import ConfigurationError
from core.integrations.dispatcher import ActionDispatcher
from core.integrations.probe import ConnectionProbe
from core.integrations.registry import AdapterRegistration, IntegrationRegistry
from core.integrations.store import ConnectionStore, FileConnectionStore, SqlConnectionStore
from core.integrations.vault import CredentialVault

logger = logging.getLogger(__name__)


@dataclass
class HubRuntime:
    config: HubConfig
    registry: IntegrationRegistry
    vault: CredentialVault
    probe: ConnectionProbe
    store: ConnectionStore
    dispatcher: ActionDispatcher
    engine: AsyncEngine | None = None

    async def start(self) -> None:
        if self.engine is not None:
            await init_db(self.engine)

    async def close(self) -> None:
        if self.engine is not None:
            await close_db(self.engine)


def build_store(config: HubConfig) -> tuple[ConnectionStore, AsyncEngine | None]:
    backend = config.store.backend
    if backend == "file":
        return FileConnectionStore(config.store.data_dir), None
    if backend == "sql":
        engine = create_engine(config.store.database_url)
        return SqlConnectionStore(create_session_factory(engine)), engine
    raise ConfigurationError(f"Unknown store backend: {backend}")


def build_runtime(
    config: HubConfig,
    registrations: Iterable[AdapterRegistration] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    tracer: Any = None,
) -> HubRuntime:
    """Wire the runtime. Fails fast when the encryption key is missing."""
    if registrations is None:
        from adapters import BUILTIN_ADAPTERS
        registrations = BUILTIN_ADAPTERS

    vault = CredentialVault.from_config(config.vault)
    registry = IntegrationRegistry(registrations, hot_reload=config.registry.hot_reload)
    registry.load_all()
    probe = ConnectionProbe.from_config(config.probe, transport=transport)
    store, engine = build_store(config)
    dispatcher = ActionDispatcher(
        registry=registry,
        vault=vault,
        store=store,
        probe=probe,
        config=config.dispatch,
        transport=transport,
        tracer=tracer,
        user_agent=config.probe.user_agent,
    )
    logger.info(
        "Integration runtime ready: %d integrations, %s store",
        registry.count, config.store.backend,
    )
    return HubRuntime(
        config=config,
        registry=registry,
        vault=vault,
        probe=probe,
        store=store,
        dispatcher=dispatcher,
        engine=engine,
    )
