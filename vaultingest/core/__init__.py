"""Core runtime components for vaultingest."""

from .cancellation import CancellationScope
from .compression import CompressionSettings, CompressionStage
from .credentials import CredentialCache
from .graceful_shutdown import GracefulShutdown
from .metrics_manager import MetricsManager
from .pipeline import IngestPipeline
from .registrar import CatalogRegistrar
from .retry import RetryConfig, RetryPolicy
from .task_queue import TaskQueue
from .uploader import ObjectStoreUploader, generate_object_key

__all__ = [
    "CancellationScope",
    "CatalogRegistrar",
    "CompressionSettings",
    "CompressionStage",
    "CredentialCache",
    "GracefulShutdown",
    "IngestPipeline",
    "MetricsManager",
    "ObjectStoreUploader",
    "RetryConfig",
    "RetryPolicy",
    "TaskQueue",
    "generate_object_key",
]
