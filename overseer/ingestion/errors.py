"""Error taxonomy shared by the client, the graph layer and the scanner."""

from __future__ import annotations

from typing import Any, Optional


class IngestionError(Exception):
    """Base class for every error the ingestion pipeline raises on purpose."""

    code = "INTERNAL_ERROR"
    recoverable = False
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "retryable": self.retryable,
        }
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(IngestionError):
    code = "VALIDATION_ERROR"


class ConfigError(IngestionError, ValueError):
    code = "CONFIG_ERROR"


class NotFoundError(IngestionError):
    code = "NOT_FOUND"


class TransientError(IngestionError):
    """Timeouts, 5xx, 429 and rate-limited 403s. Safe to retry later."""

    code = "TRANSIENT_ERROR"
    recoverable = True
    retryable = True


class RemoteAPIError(IngestionError):
    """Any other non-success response from GitHub."""

    code = "GITHUB_API_ERROR"

    def __init__(self, message: str, status: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status = status
        if status is not None:
            self.details.setdefault("status", status)


class DecodeError(IngestionError):
    code = "DECODE_ERROR"


class GraphError(IngestionError):
    """Graph database failure, sub-classified by ``kind``.

    Kinds: timeout, connection, syntax, constraint, auth, permission,
    not_initialized, query.
    """

    RETRYABLE_KINDS = frozenset({"timeout", "connection"})

    def __init__(self, message: str, kind: str = "query", **kwargs: Any) -> None:
        kwargs.setdefault("code", f"GRAPH_{kind.upper()}")
        super().__init__(message, **kwargs)
        self.kind = kind
        self.retryable = kind in self.RETRYABLE_KINDS
        self.recoverable = self.retryable


class BackendNotImplementedError(GraphError):
    def __init__(self, backend: str, operation: str) -> None:
        super().__init__(
            f"{backend} backend does not implement {operation}",
            kind="not_implemented",
            code="NOT_IMPLEMENTED",
            details={"backend": backend, "operation": operation},
        )
        self.backend = backend
        self.operation = operation


class MigrationError(IngestionError):
    code = "MIGRATION_ERROR"


class ScanCancelledError(IngestionError):
    code = "SCAN_CANCELLED"
    recoverable = True
