"""Best-effort image normalisation before upload."""

from __future__ import annotations

import io
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from ..errors import CompressionError
from ..models import NormalizedFile

_FORMAT_DETAILS = {
    "WEBP": ("image/webp", ".webp"),
    "JPEG": ("image/jpeg", ".jpg"),
    "PNG": ("image/png", ".png"),
}


@dataclass(frozen=True)
class CompressionSettings:
    max_bytes: int = 4 * 1024 * 1024
    max_dimension: int = 4096
    format: str = "WEBP"
    quality: int = 85
    min_quality: int = 45
    quality_step: int = 10
    fallback_to_original: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CompressionSettings":
        return cls(
            max_bytes=int(data.get("max_bytes", cls.max_bytes)),
            max_dimension=int(data.get("max_dimension", cls.max_dimension)),
            format=str(data.get("format", cls.format)).upper(),
            quality=int(data.get("quality", cls.quality)),
            min_quality=int(data.get("min_quality", cls.min_quality)),
            quality_step=max(1, int(data.get("quality_step", cls.quality_step))),
            fallback_to_original=bool(data.get("fallback_to_original", True)),
        )


class CompressionStage:
    """Turns a source file into a payload within the configured size envelope.

    Pure apart from reading the source; safe to call from several threads.
    """

    def __init__(self, settings: CompressionSettings | None = None, *, logger: logging.Logger | None = None) -> None:
        self.settings = settings or CompressionSettings()
        if self.settings.format not in _FORMAT_DETAILS:
            raise ValueError(f"Unsupported target format: {self.settings.format}")
        self.logger = logger or logging.getLogger("vaultingest.compression")

    def compress(self, source: str | Path) -> NormalizedFile:
        path = Path(source)
        try:
            return self._normalise(path)
        except CompressionError as exc:
            if not self.settings.fallback_to_original:
                raise
            self.logger.warning("Compression failed for %s (%s); uploading original", path.name, exc)
            return self._original(path)

    # ------------------------------------------------------------------
    def _normalise(self, path: Path) -> NormalizedFile:
        settings = self.settings
        content_type, extension = _FORMAT_DETAILS[settings.format]
        try:
            with Image.open(path) as opened:
                image = ImageOps.exif_transpose(opened)
                image.load()
                if max(image.size) > settings.max_dimension:
                    image.thumbnail((settings.max_dimension, settings.max_dimension), Image.LANCZOS)
                image = _convert_for(settings.format, image)
                quality = settings.quality
                data = _encode(image, settings.format, quality)
                # PNG ignores quality, so another pass would give the same bytes.
                while (
                    settings.format != "PNG"
                    and len(data) > settings.max_bytes
                    and quality > settings.min_quality
                ):
                    quality = max(settings.min_quality, quality - settings.quality_step)
                    data = _encode(image, settings.format, quality)
                width, height = image.size
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
            raise CompressionError(f"{type(exc).__name__}: {exc}") from exc
        self.logger.debug(
            "Compressed %s to %dx%d %s (%d bytes, q=%d)",
            path.name,
            width,
            height,
            settings.format,
            len(data),
            quality,
        )
        return NormalizedFile(
            data=data,
            content_type=content_type,
            extension=extension,
            width=width,
            height=height,
            compressed=True,
        )

    def _original(self, path: Path) -> NormalizedFile:
        data = path.read_bytes()
        width, height = read_dimensions(data)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return NormalizedFile(
            data=data,
            content_type=content_type,
            extension=path.suffix.lower(),
            width=width,
            height=height,
            compressed=False,
        )


def read_dimensions(data: bytes) -> Tuple[int, int]:
    """Return ``(width, height)`` of an encoded image, or ``(0, 0)`` if unreadable."""

    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError):
        return 0, 0


def _convert_for(fmt: str, image: Image.Image) -> Image.Image:
    if fmt == "JPEG" and image.mode not in ("RGB", "L"):
        return image.convert("RGB")
    if fmt in ("WEBP", "PNG") and image.mode not in ("RGB", "RGBA", "L", "LA"):
        has_alpha = "A" in image.getbands() or "transparency" in image.info
        return image.convert("RGBA" if has_alpha else "RGB")
    return image


def _encode(image: Image.Image, fmt: str, quality: int) -> bytes:
    buffer = io.BytesIO()
    if fmt == "PNG":
        image.save(buffer, format=fmt, optimize=True)
    elif fmt == "WEBP":
        image.save(buffer, format=fmt, quality=quality, method=4)
    else:
        image.save(buffer, format=fmt, quality=quality, optimize=True)
    return buffer.getvalue()


__all__ = ["CompressionSettings", "CompressionStage", "read_dimensions"]
