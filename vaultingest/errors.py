"""Exception hierarchy for the ingestion pipeline."""

from __future__ import annotations


class IngestError(Exception):
    """Base class for every error raised by vaultingest."""


class ConfigError(IngestError, ValueError):
    """Raised when the loaded configuration is unusable."""


class ValidationError(IngestError, ValueError):
    """Raised when a manifest cannot be turned into upload tasks."""


class CredentialFetchError(IngestError):
    """The token issuer was unreachable, denied the request or answered garbage."""


class CompressionError(IngestError):
    """Normalising a source image failed."""


class UploadError(IngestError):
    """The object store rejected or never acknowledged a PUT."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)


class RegistrationError(IngestError):
    """The catalog refused to register an uploaded object."""


class CancelledError(IngestError):
    """Cooperative abort of a run. Not a failure and never retried."""


__all__ = [
    "CancelledError",
    "CompressionError",
    "ConfigError",
    "CredentialFetchError",
    "IngestError",
    "RegistrationError",
    "UploadError",
    "ValidationError",
]
