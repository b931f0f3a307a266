"""
Integration Hub Core: uniform runtime for third-party service APIs.

Provides:
- IntegrationRegistry: explicit adapter registration + descriptor lookup
- CredentialVault: AES-256 encryption of credential bundles at rest
- ConnectionProbe: best-effort credential check before storing
- ConnectionStore: per-user connection persistence (file or SQL)
- ActionDispatcher: connect / execute orchestration with retries
"""
from core.errors import (
    AdapterError,
    ConfigurationError,
    DecryptionError,
    DescriptorError,
    EndpointNotFound,
    ErrorCode,
    HubError,
    IntegrationNotFound,
    NotConnected,
    ProbeFailed,
    StorageError,
    ValidationError,
    VendorCallError,
)
from core.integrations.adapter_base import (
    AdapterConfig,
    AdapterFactory,
    DescriptorAdapter,
    HttpAdapter,
    IntegrationAdapter,
)
from core.integrations.descriptor import (
    AuthType,
    AuthenticationSpec,
    EndpointDescriptor,
    IntegrationDescriptor,
    load_descriptor,
)
from core.integrations.dispatcher import ActionDispatcher
from core.integrations.models import (
    ActionError,
    ActionOutcome,
    ActionRequest,
    ActionResult,
    Connection,
    ConnectionMetadata,
    ConnectionStatus,
    ConnectResult,
    CredentialBundle,
    EncryptedCredential,
    InlineCredentials,
    ProbeResult,
    StoredCredentials,
)
from core.integrations.probe import ConnectionProbe, NetworkFailurePolicy
from core.integrations.registry import AdapterRegistration, IntegrationRegistry
from core.integrations.store import ConnectionStore, FileConnectionStore, SqlConnectionStore
from core.integrations.vault import CredentialVault

__all__ = [
    # Adapters
    "AdapterConfig",
    "AdapterFactory",
    "DescriptorAdapter",
    "HttpAdapter",
    "IntegrationAdapter",
    # Descriptors
    "AuthType",
    "AuthenticationSpec",
    "EndpointDescriptor",
    "IntegrationDescriptor",
    "load_descriptor",
    # Runtime
    "ActionDispatcher",
    "AdapterRegistration",
    "ConnectionProbe",
    "ConnectionStore",
    "CredentialVault",
    "FileConnectionStore",
    "IntegrationRegistry",
    "NetworkFailurePolicy",
    "SqlConnectionStore",
    # Models
    "ActionError",
    "ActionOutcome",
    "ActionRequest",
    "ActionResult",
    "Connection",
    "ConnectionMetadata",
    "ConnectionStatus",
    "ConnectResult",
    "CredentialBundle",
    "EncryptedCredential",
    "InlineCredentials",
    "ProbeResult",
    "StoredCredentials",
    # Errors
    "AdapterError",
    "ConfigurationError",
    "DecryptionError",
    "DescriptorError",
    "EndpointNotFound",
    "ErrorCode",
    "HubError",
    "IntegrationNotFound",
    "NotConnected",
    "ProbeFailed",
    "StorageError",
    "ValidationError",
    "VendorCallError",
]
