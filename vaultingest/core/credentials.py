"""Caches the short-lived object store credential issued by the STS endpoint."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from ..errors import CredentialFetchError
from ..models import Credentials
from .cancellation import CancellationScope

DEFAULT_SAFETY_MARGIN = 120.0


class CredentialCache:
    """Lazily refreshed credential holder shared by every worker.

    Reads outside the lock may observe a value that is about to be replaced;
    that is fine because duplicate fetches are idempotent.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        timeout: float = 15.0,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        headers: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.time,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.safety_margin = float(safety_margin)
        self.clock = clock
        self.logger = logger or logging.getLogger("vaultingest.credentials")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=dict(headers or {}))
        self._cached: Credentials | None = None
        self._lock: asyncio.Lock | None = None
        self.fetch_count = 0

    @property
    def cached(self) -> Credentials | None:
        return self._cached

    def invalidate(self) -> None:
        if self._cached is not None:
            self.logger.info("Discarding cached upload credentials")
        self._cached = None

    async def get_credentials(self, scope: CancellationScope | None = None) -> Credentials:
        cached = self._cached
        if cached is not None and cached.is_fresh(self.clock(), self.safety_margin):
            return cached
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            # Another worker may have refreshed while we waited.
            cached = self._cached
            if cached is not None and cached.is_fresh(self.clock(), self.safety_margin):
                return cached
            fetch = self._fetch()
            credentials = await (scope.run(fetch) if scope is not None else fetch)
            self._cached = credentials
            return credentials

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    async def _fetch(self) -> Credentials:
        self.fetch_count += 1
        started = time.perf_counter()
        try:
            response = await self._client.get(self.endpoint)
        except httpx.HTTPError as exc:
            raise CredentialFetchError(f"Credential endpoint unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise CredentialFetchError(
                f"Credential endpoint returned HTTP {response.status_code}: {_error_text(response)}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise CredentialFetchError("Credential endpoint returned invalid JSON") from exc
        credentials = parse_credentials(payload)
        self.logger.debug(
            "Fetched upload credentials for bucket %s in %.2fs (expires %s)",
            credentials.bucket,
            time.perf_counter() - started,
            datetime.fromtimestamp(credentials.expires_at, tz=timezone.utc).isoformat(),
        )
        return credentials


def parse_credentials(payload: Any) -> Credentials:
    """Build :class:`Credentials` from either the flat or the enveloped issuer response."""

    if not isinstance(payload, Mapping):
        raise CredentialFetchError("Credential response must be a JSON object")
    if payload.get("success") is False or payload.get("error"):
        reason = payload.get("error") or "request denied"
        raise CredentialFetchError(f"Credential issuer denied the request: {reason}")

    envelope = payload.get("credentials")
    if isinstance(envelope, Mapping):
        location = payload.get("config") if isinstance(payload.get("config"), Mapping) else {}
        fields: Dict[str, Any] = {
            "access_key": envelope.get("accessKeyId"),
            "secret": envelope.get("accessKeySecret"),
            "session_token": envelope.get("securityToken"),
            "expires_at": envelope.get("expiration"),
            "bucket": location.get("bucket"),
            "region": location.get("region"),
            "path_prefix": location.get("uploadPath") or "",
        }
    else:
        fields = {
            "access_key": payload.get("accessKey"),
            "secret": payload.get("secret"),
            "session_token": payload.get("sessionToken"),
            "expires_at": payload.get("expiresAt"),
            "bucket": payload.get("bucket"),
            "region": payload.get("region"),
            "path_prefix": payload.get("pathPrefix") or "",
        }

    missing = [
        name
        for name in ("access_key", "secret", "session_token", "expires_at", "bucket", "region")
        if not fields.get(name)
    ]
    if missing:
        raise CredentialFetchError(f"Credential response missing field(s): {', '.join(missing)}")
    fields["expires_at"] = _parse_expiry(fields["expires_at"])
    return Credentials(**{key: value if key == "expires_at" else str(value) for key, value in fields.items()})


def _parse_expiry(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Millisecond timestamps are common in JS issuers.
        return float(value) / 1000.0 if value > 1e11 else float(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return _parse_expiry(float(text))
        except ValueError:
            pass
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise CredentialFetchError(f"Unrecognised credential expiry: {value!r}") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    raise CredentialFetchError(f"Unrecognised credential expiry: {value!r}")


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, Mapping) and data.get("error"):
        return str(data["error"])
    return response.text[:200]


__all__ = ["CredentialCache", "DEFAULT_SAFETY_MARGIN", "parse_credentials"]
