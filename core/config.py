"""Dataclass-based runtime configuration.

The integration runtime is configured with a frozen HubConfig built once at
process start (usually via HubConfig.from_env()) and injected into the
vault, probe, store and dispatcher. Nothing in the runtime reads the
environment directly.

Durations in the environment are milliseconds; the dataclasses hold seconds.
"""

import os
from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Nested config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VaultConfig:
    """Credential encryption settings."""

    encryption_key: str | None = None
    algorithm: str = "aes-256-gcm"  # aes-256-gcm | aes-256-cbc-hmac-sha256

    def __repr__(self) -> str:
        key = "***" if self.encryption_key else None
        return f"VaultConfig(encryption_key={key!r}, algorithm={self.algorithm!r})"


@dataclass(frozen=True)
class ProbeConfig:
    """Connection probe settings."""

    timeout: float = 10.0
    network_policy: str = "optimistic"  # optimistic | strict
    endpoints: tuple[str, ...] = (
        "/me",
        "/user",
        "/users/me",
        "/account",
        "/api/v1/me",
        "/api/v2/me",
        "/",
    )
    user_agent: str = "Integration-Hub/1.0"


@dataclass(frozen=True)
class DispatchConfig:
    """Execute path timeout and retry budget."""

    timeout: float = 30.0
    # Caps one execute end to end: every attempt plus backoff
    deadline: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    retry_backoff_max: float = 15.0
    retry_non_idempotent: bool = False


@dataclass(frozen=True)
class StoreConfig:
    """Connection store backend selection."""

    backend: str = "file"  # file | sql
    data_dir: str = "data/connections"
    database_url: str = "sqlite+aiosqlite:///./integration_hub.db"


@dataclass(frozen=True)
class RegistryConfig:
    hot_reload: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

def _env_ms(name: str, default_seconds: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default_seconds
    return int(raw) / 1000.0


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class HubConfig:
    """Complete configuration for the integration runtime.

    Usage::

        config = HubConfig.from_env()
        runtime = build_runtime(config)
    """

    vault: VaultConfig = field(default_factory=VaultConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)

    @classmethod
    def default(cls) -> "HubConfig":
        """Create config with all defaults (no encryption key)."""
        return cls()

    @classmethod
    def from_env(cls) -> "HubConfig":
        """Create config from environment variables.

        Example: HUB_TIMEOUT_MS=20000 HUB_MAX_RETRIES=2
        """
        vault = VaultConfig(
            encryption_key=os.getenv("HUB_ENCRYPTION_KEY") or os.getenv("ENCRYPTION_KEY"),
            algorithm=os.getenv("HUB_ENCRYPTION_ALGORITHM", VaultConfig.algorithm),
        )
        probe = ProbeConfig(
            timeout=_env_ms("HUB_PROBE_TIMEOUT_MS", ProbeConfig.timeout),
            network_policy=os.getenv("HUB_PROBE_NETWORK_POLICY", ProbeConfig.network_policy).lower(),
        )
        dispatch = DispatchConfig(
            timeout=_env_ms("HUB_TIMEOUT_MS", DispatchConfig.timeout),
            deadline=_env_ms("HUB_DEADLINE_MS", DispatchConfig.deadline),
            max_retries=int(os.getenv("HUB_MAX_RETRIES", str(DispatchConfig.max_retries))),
            retry_delay=_env_ms("HUB_RETRY_DELAY_MS", DispatchConfig.retry_delay),
            retry_backoff_max=_env_ms("HUB_RETRY_BACKOFF_MAX_MS", DispatchConfig.retry_backoff_max),
            retry_non_idempotent=_env_bool("HUB_RETRY_NON_IDEMPOTENT", False),
        )
        store = StoreConfig(
            backend=os.getenv("HUB_STORE_BACKEND", StoreConfig.backend).lower(),
            data_dir=os.getenv("HUB_DATA_DIR", StoreConfig.data_dir),
            database_url=os.getenv("DATABASE_URL", StoreConfig.database_url),
        )
        registry = RegistryConfig(hot_reload=_env_bool("HUB_HOT_RELOAD", False))
        logging_config = LoggingConfig(level=os.getenv("LOG_LEVEL", LoggingConfig.level).upper())
        origins = tuple(
            o.strip()
            for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
            if o.strip()
        )
        return cls(
            vault=vault,
            probe=probe,
            dispatch=dispatch,
            store=store,
            registry=registry,
            logging=logging_config,
            cors_origins=origins,
        )
