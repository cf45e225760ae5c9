"""Supporting helpers that sit outside the ingestion core."""

from .manifest import ManifestEntry, load_manifest

__all__ = ["ManifestEntry", "load_manifest"]
