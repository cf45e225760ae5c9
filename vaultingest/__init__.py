"""vaultingest: compress, upload and catalogue batches of images."""

from .errors import (
    CancelledError,
    CompressionError,
    ConfigError,
    CredentialFetchError,
    IngestError,
    RegistrationError,
    UploadError,
    ValidationError,
)
from .models import QueueState, TaskMetadata, TaskStatus, UploadTask

__version__ = "0.1.0"

__all__ = [
    "CancelledError",
    "CompressionError",
    "ConfigError",
    "CredentialFetchError",
    "IngestError",
    "QueueState",
    "RegistrationError",
    "TaskMetadata",
    "TaskStatus",
    "UploadError",
    "UploadTask",
    "ValidationError",
    "__version__",
]
