"""Registers uploaded objects with the catalog service."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx

from ..errors import RegistrationError
from ..models import RegisteredAsset, TaskMetadata
from .cancellation import CancellationScope


class CatalogRegistrar:
    def __init__(
        self,
        *,
        endpoint: str,
        timeout: float = 60.0,
        headers: Optional[Mapping[str, str]] = None,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.logger = logger or logging.getLogger("vaultingest.registrar")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=dict(headers or {}))

    async def register(
        self,
        key: str,
        *,
        filename: str,
        metadata: TaskMetadata,
        width: int,
        height: int,
        size: int,
        scope: CancellationScope | None = None,
    ) -> RegisteredAsset:
        body = {
            "images": [
                {
                    "ossKey": key,
                    "filename": filename,
                    "width": width,
                    "height": height,
                    "filesize": size,
                    "metadata": metadata.catalog_payload(),
                }
            ]
        }
        request = self._client.post(self.endpoint, json=body)
        try:
            response = await (scope.run(request) if scope is not None else request)
        except httpx.HTTPError as exc:
            raise RegistrationError(f"Catalog unreachable while registering {key}: {exc}") from exc
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if response.status_code >= 400:
            detail = _detail(payload) or response.text[:200]
            raise RegistrationError(f"Catalog returned HTTP {response.status_code}: {detail}")
        asset = _parse_result(key, payload)
        self.logger.debug("Registered %s as asset %s", key, asset.asset_id)
        return asset

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _parse_result(key: str, payload: Any) -> RegisteredAsset:
    if not isinstance(payload, Mapping):
        raise RegistrationError("Catalog returned a non-JSON response")
    if payload.get("success") is False:
        raise RegistrationError(_detail(payload) or "Catalog reported failure")
    failed = payload.get("failed") or []
    for item in failed:
        if isinstance(item, Mapping) and item.get("ossKey") in (key, None, "unknown"):
            raise RegistrationError(str(item.get("error") or "Catalog rejected the image"))
    registered = payload.get("registered") or []
    for item in registered:
        if isinstance(item, Mapping) and item.get("ossKey", key) == key:
            asset_id = item.get("id")
            if asset_id is None:
                break
            return RegisteredAsset(asset_id=asset_id, key=key)
    if failed:
        first = failed[0]
        raise RegistrationError(str(first.get("error") if isinstance(first, Mapping) else first))
    raise RegistrationError(f"Catalog did not acknowledge {key}")


def _detail(payload: Any) -> str:
    if isinstance(payload, Mapping):
        parts = [str(payload[name]) for name in ("error", "details") if payload.get(name)]
        return ": ".join(parts)
    return ""


__all__ = ["CatalogRegistrar"]
