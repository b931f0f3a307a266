"""
Integration Hub error taxonomy.

Every failure the runtime can surface to a caller is a HubError with:
- a stable ErrorCode (machine readable)
- an HTTP-equivalent status_code (used by the transport layer)
- free-form context (never credentials)
"""
from __future__ import annotations
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    INTEGRATION_NOT_FOUND = "integration_not_found"
    ENDPOINT_NOT_FOUND = "endpoint_not_found"
    NOT_CONNECTED = "not_connected"
    PROBE_FAILED = "probe_failed"
    DECRYPTION_FAILED = "decryption_failed"
    VENDOR_CALL_FAILED = "vendor_call_failed"
    VENDOR_TIMEOUT = "vendor_timeout"
    CONFIGURATION_ERROR = "configuration_error"
    DESCRIPTOR_INVALID = "descriptor_invalid"
    ADAPTER_ERROR = "adapter_error"
    STORAGE_ERROR = "storage_error"


class HubError(Exception):
    """Base class for all integration runtime errors."""

    code: ErrorCode = ErrorCode.ADAPTER_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        status_code: int | None = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "code": self.code.value,
            "type": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.context:
            data["context"] = dict(self.context)
        return data


class ValidationError(HubError):
    code = ErrorCode.VALIDATION_FAILED
    status_code = 400


class IntegrationNotFound(HubError):
    code = ErrorCode.INTEGRATION_NOT_FOUND
    status_code = 404

    def __init__(self, integration_id: str):
        super().__init__(
            f"Integration not found: {integration_id}",
            integration_id=integration_id,
        )


class EndpointNotFound(HubError):
    code = ErrorCode.ENDPOINT_NOT_FOUND
    status_code = 404

    def __init__(self, integration_id: str, action: str):
        super().__init__(
            f"Endpoint not found: {action} on {integration_id}",
            integration_id=integration_id,
            action=action,
        )


class NotConnected(HubError):
    code = ErrorCode.NOT_CONNECTED
    status_code = 401

    def __init__(self, integration_id: str):
        super().__init__(
            "Integration not connected. Please connect first.",
            integration_id=integration_id,
        )


class ProbeFailed(HubError):
    code = ErrorCode.PROBE_FAILED
    status_code = 400


class DecryptionError(HubError):
    """Stored credentials could not be decrypted with the configured key.

    Usually means the encryption key was changed or rotated without
    re-encrypting existing connections.
    """

    code = ErrorCode.DECRYPTION_FAILED
    status_code = 500


class VendorCallError(HubError):
    """Downstream vendor call failed.

    `transient` marks failures worth retrying (timeouts, network errors,
    5xx, 429). 4xx responses are never transient. Callers see 502 (504 for
    timeouts); the vendor status and body are kept in vendor_status and
    vendor_body.
    """

    code = ErrorCode.VENDOR_CALL_FAILED
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        vendor_status: int | None = None,
        vendor_body: Any = None,
        transient: bool = False,
        code: ErrorCode | None = None,
        status_code: int | None = None,
        **context: Any,
    ):
        super().__init__(message, code=code, status_code=status_code, **context)
        self.vendor_status = vendor_status
        self.vendor_body = vendor_body
        self.transient = transient

    @classmethod
    def from_status(cls, status: int, body: Any, **context: Any) -> "VendorCallError":
        return cls(
            f"Vendor returned HTTP {status}",
            vendor_status=status,
            vendor_body=body,
            transient=status >= 500 or status == 429,
            **context,
        )

    @classmethod
    def timeout(cls, seconds: float, **context: Any) -> "VendorCallError":
        return cls(
            f"Vendor call timed out after {seconds:g}s",
            transient=True,
            code=ErrorCode.VENDOR_TIMEOUT,
            status_code=504,
            **context,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["vendor_status"] = self.vendor_status
        data["vendor_body"] = self.vendor_body
        data["transient"] = self.transient
        return data


class ConfigurationError(HubError):
    code = ErrorCode.CONFIGURATION_ERROR
    status_code = 500


class DescriptorError(HubError):
    code = ErrorCode.DESCRIPTOR_INVALID
    status_code = 500


class StorageError(HubError):
    """Connection store could not be read or written."""

    code = ErrorCode.STORAGE_ERROR
    status_code = 500


class AdapterError(HubError):
    """Unexpected failure inside an adapter (a bug, not a vendor error)."""

    code = ErrorCode.ADAPTER_ERROR
    status_code = 500
