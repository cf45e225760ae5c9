"""Signed PUT uploads to the object store using STS credentials."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import time
import uuid
from datetime import datetime
from email.utils import formatdate
from pathlib import PurePath
from typing import Dict, Mapping
from urllib.parse import quote

import httpx

from ..errors import UploadError
from ..models import Credentials, NormalizedFile
from .cancellation import CancellationScope

DEFAULT_ENDPOINT_TEMPLATE = "https://{bucket}.{region}.aliyuncs.com"
DEFAULT_CACHE_CONTROL = "public, max-age=31536000"
_UNSAFE_NAME = re.compile(r"[^\w-]")


def default_prefix(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"images/{now.year}/{now.month:02d}/"


def generate_object_key(
    original_name: str,
    *,
    prefix: str = "",
    extension: str = ".webp",
    now: datetime | None = None,
) -> str:
    """Build a collision-resistant key: ``{prefix}{clean}_{millis}_{random}{ext}``."""

    now = now or datetime.now()
    base = PurePath(original_name).stem or "image"
    clean = _UNSAFE_NAME.sub("_", base)[:50]
    prefix = prefix or default_prefix(now)
    if not prefix.endswith("/"):
        prefix += "/"
    millis = int(now.timestamp() * 1000)
    return f"{prefix}{clean}_{millis}_{uuid.uuid4().hex[:8]}{extension}"


def sign_request(
    credentials: Credentials,
    *,
    method: str,
    key: str,
    content_type: str,
    date: str,
    content_md5: str = "",
    oss_headers: Mapping[str, str] | None = None,
) -> str:
    """Return the ``Authorization`` header value for an OSS header-signed request."""

    canonical_headers = "".join(
        f"{name.lower()}:{value}\n"
        for name, value in sorted((oss_headers or {}).items(), key=lambda item: item[0].lower())
    )
    resource = f"/{credentials.bucket}/{key}"
    string_to_sign = f"{method}\n{content_md5}\n{content_type}\n{date}\n{canonical_headers}{resource}"
    digest = hmac.new(
        credentials.secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1
    ).digest()
    return f"OSS {credentials.access_key}:{base64.b64encode(digest).decode('ascii')}"


class ObjectStoreUploader:
    def __init__(
        self,
        *,
        endpoint_template: str = DEFAULT_ENDPOINT_TEMPLATE,
        timeout: float = 120.0,
        cache_control: str = DEFAULT_CACHE_CONTROL,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint_template = endpoint_template
        self.cache_control = cache_control
        self.logger = logger or logging.getLogger("vaultingest.uploader")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def object_url(self, credentials: Credentials, key: str) -> str:
        base = self.endpoint_template.format(bucket=credentials.bucket, region=credentials.region)
        return f"{base.rstrip('/')}/{quote(key, safe='/')}"

    async def upload(
        self,
        credentials: Credentials,
        key: str,
        payload: NormalizedFile,
        scope: CancellationScope | None = None,
    ) -> str:
        url = self.object_url(credentials, key)
        request = self._client.put(url, content=payload.data, headers=self._headers(credentials, key, payload))
        started = time.perf_counter()
        try:
            response = await (scope.run(request) if scope is not None else request)
        except httpx.HTTPError as exc:
            raise UploadError(f"Upload of {key} failed: {exc}") from exc
        if response.status_code >= 400:
            raise UploadError(
                f"Object store rejected {key} with HTTP {response.status_code}: {_error_code(response)}",
                status_code=response.status_code,
            )
        self.logger.debug(
            "Uploaded %s (%d bytes) in %.2fs", key, payload.size, time.perf_counter() - started
        )
        return url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, credentials: Credentials, key: str, payload: NormalizedFile) -> Dict[str, str]:
        date = formatdate(usegmt=True)
        content_md5 = base64.b64encode(hashlib.md5(payload.data).digest()).decode("ascii")
        oss_headers = {"x-oss-security-token": credentials.session_token}
        authorization = sign_request(
            credentials,
            method="PUT",
            key=key,
            content_type=payload.content_type,
            date=date,
            content_md5=content_md5,
            oss_headers=oss_headers,
        )
        return {
            "Authorization": authorization,
            "Date": date,
            "Content-Type": payload.content_type,
            "Content-MD5": content_md5,
            "Cache-Control": self.cache_control,
            **oss_headers,
        }


def _error_code(response: httpx.Response) -> str:
    match = re.search(r"<Code>([^<]+)</Code>", response.text or "")
    if match:
        return match.group(1)
    return (response.text or "").strip()[:200] or "no body"


__all__ = [
    "ObjectStoreUploader",
    "default_prefix",
    "generate_object_key",
    "sign_request",
]
