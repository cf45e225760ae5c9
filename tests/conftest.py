from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Set

import httpx
import pytest
from PIL import Image

from vaultingest.core import CredentialCache, IngestPipeline, RetryConfig, RetryPolicy
from vaultingest.errors import UploadError
from vaultingest.models import NormalizedFile, RegisteredAsset, TaskMetadata, UploadTask


def credential_payload(**overrides) -> Dict[str, object]:
    payload: Dict[str, object] = {
        "accessKey": "AKID",
        "secret": "s3cr3t",
        "sessionToken": "session-token",
        "expiresAt": time.time() + 3600,
        "bucket": "vault",
        "region": "oss-cn-test",
        "pathPrefix": "images/test/",
    }
    payload.update(overrides)
    return payload


class CredentialServer:
    """Counts requests made to a fake token issuer."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(200, json=credential_payload())

    def cache(self) -> CredentialCache:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self))
        return CredentialCache(endpoint="http://issuer.test/sts", client=client)


class FakeCompressor:
    def __init__(self) -> None:
        self.calls: List[Path] = []

    def compress(self, source) -> NormalizedFile:
        self.calls.append(Path(source))
        return NormalizedFile(
            data=b"payload",
            content_type="image/webp",
            extension=".webp",
            width=8,
            height=8,
        )


class FakeUploader:
    """Records concurrency and optionally blocks or fails per file stem."""

    def __init__(self, *, delay: float = 0.01, failing: Set[str] | None = None) -> None:
        self.delay = delay
        self.failing = failing or set()
        self.gate: asyncio.Event | None = None
        self.active = 0
        self.max_active = 0
        self.started = 0
        self.keys: List[str] = []

    def block(self) -> None:
        self.gate = asyncio.Event()

    async def upload(self, credentials, key, payload, scope=None) -> str:
        self.started += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await scope.run(self.gate.wait())
            await asyncio.sleep(self.delay)
            stem = key.rsplit("/", 1)[-1].split("_", 1)[0]
            if stem in self.failing:
                raise UploadError(f"Object store rejected {key}", status_code=500)
            self.keys.append(key)
            return f"https://{credentials.bucket}.example/{key}"
        finally:
            self.active -= 1

    async def aclose(self) -> None:
        return None


class FakeRegistrar:
    def __init__(self) -> None:
        self.registered: List[str] = []
        self.filenames: List[str] = []

    async def register(self, key, *, filename, metadata, width, height, size, scope=None) -> RegisteredAsset:
        self.registered.append(key)
        self.filenames.append(filename)
        return RegisteredAsset(asset_id=len(self.registered), key=key)

    async def aclose(self) -> None:
        return None


class Stages:
    def __init__(self, **uploader_kwargs) -> None:
        self.server = CredentialServer()
        self.credentials = self.server.cache()
        self.compressor = FakeCompressor()
        self.uploader = FakeUploader(**uploader_kwargs)
        self.registrar = FakeRegistrar()

    def pipeline(self, *, compressor=None, max_attempts: int = 3) -> IngestPipeline:
        return IngestPipeline(
            compressor=compressor or self.compressor,
            credentials=self.credentials,
            uploader=self.uploader,
            registrar=self.registrar,
            retry=RetryPolicy(RetryConfig(max_attempts=max_attempts, base_delay_seconds=0)),
            logger=logging.getLogger("vaultingest.test"),
        )


@pytest.fixture
def stages() -> Callable[..., Stages]:
    return Stages


@pytest.fixture
def make_tasks() -> Callable[..., List[UploadTask]]:
    def factory(count: int, *, directory: Path = Path("/tmp/vaultingest")) -> List[UploadTask]:
        return [
            UploadTask.create(
                directory / f"img{index}.png",
                TaskMetadata(title=f"img{index}", model_base="SDXL", source="Artist"),
            )
            for index in range(1, count + 1)
        ]

    return factory


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    def factory(name: str = "sample.png", size=(64, 48), mode: str = "RGB", color="red") -> Path:
        path = tmp_path / name
        Image.new(mode, size, color).save(path)
        return path

    return factory


@pytest.fixture
def issuer_payload() -> Callable[..., Dict[str, object]]:
    return credential_payload
