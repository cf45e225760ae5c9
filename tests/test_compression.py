from __future__ import annotations

import io
import struct
import zlib

import pytest
from PIL import Image

from vaultingest.core import CompressionSettings, CompressionStage
from vaultingest.core import compression
from vaultingest.core.compression import read_dimensions
from vaultingest.errors import CompressionError


def _png_chunk(tag: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", zlib.crc32(tag + data) & 0xFFFFFFFF)


def _oversized_png(width: int = 20000, height: int = 20000) -> bytes:
    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", zlib.compress(b""))
        + _png_chunk(b"IEND", b"")
    )


def test_large_image_is_resized_to_webp(make_image) -> None:
    source = make_image("wide.png", size=(800, 400))
    stage = CompressionStage(CompressionSettings(max_dimension=200))

    result = stage.compress(source)

    assert result.compressed
    assert result.content_type == "image/webp"
    assert result.extension == ".webp"
    assert (result.width, result.height) == (200, 100)
    with Image.open(io.BytesIO(result.data)) as image:
        assert image.format == "WEBP"
        assert image.size == (200, 100)


def test_small_image_keeps_its_dimensions(make_image) -> None:
    source = make_image("small.png", size=(40, 30), mode="RGBA", color=(0, 0, 255, 128))

    result = CompressionStage().compress(source)

    assert (result.width, result.height) == (40, 30)
    assert result.size == len(result.data)


def test_jpeg_target_converts_alpha(make_image) -> None:
    source = make_image("alpha.png", mode="RGBA", color=(10, 20, 30, 40))
    stage = CompressionStage(CompressionSettings(format="JPEG"))

    result = stage.compress(source)

    assert result.content_type == "image/jpeg"
    assert result.extension == ".jpg"


def test_unreadable_file_falls_back_to_original(tmp_path) -> None:
    source = tmp_path / "notes.png"
    source.write_bytes(b"not really a png")

    result = CompressionStage().compress(source)

    assert not result.compressed
    assert result.data == b"not really a png"
    assert result.content_type == "image/png"
    assert result.extension == ".png"
    assert (result.width, result.height) == (0, 0)


def test_fallback_can_be_disabled(tmp_path) -> None:
    source = tmp_path / "notes.png"
    source.write_bytes(b"not really a png")
    stage = CompressionStage(CompressionSettings(fallback_to_original=False))

    with pytest.raises(CompressionError):
        stage.compress(source)


def test_settings_from_mapping_normalises_values() -> None:
    settings = CompressionSettings.from_mapping({"format": "webp", "quality": "70", "quality_step": 0})

    assert settings.format == "WEBP"
    assert settings.quality == 70
    assert settings.quality_step == 1


def test_unsupported_format_is_rejected() -> None:
    with pytest.raises(ValueError):
        CompressionStage(CompressionSettings(format="GIF"))


def test_read_dimensions_handles_garbage() -> None:
    assert read_dimensions(b"garbage") == (0, 0)


def test_read_dimensions_handles_decompression_bombs() -> None:
    assert read_dimensions(_oversized_png()) == (0, 0)


def test_oversized_image_falls_back_to_original(tmp_path) -> None:
    source = tmp_path / "huge.png"
    source.write_bytes(_oversized_png())

    result = CompressionStage().compress(source)

    assert not result.compressed
    assert result.data == source.read_bytes()
    assert (result.width, result.height) == (0, 0)


def test_png_target_encodes_once(make_image, monkeypatch) -> None:
    source = make_image("noisy.png", size=(64, 64))
    calls = []
    encode = compression._encode

    def counting_encode(image, fmt, quality):
        calls.append(quality)
        return encode(image, fmt, quality)

    monkeypatch.setattr(compression, "_encode", counting_encode)
    stage = CompressionStage(CompressionSettings(format="PNG", max_bytes=1))

    result = stage.compress(source)

    assert result.compressed
    assert result.content_type == "image/png"
    assert calls == [85]


def test_webp_target_steps_quality_down_to_fit(make_image, monkeypatch) -> None:
    source = make_image("noisy.png", size=(64, 64))
    calls = []
    encode = compression._encode

    def counting_encode(image, fmt, quality):
        calls.append(quality)
        return encode(image, fmt, quality)

    monkeypatch.setattr(compression, "_encode", counting_encode)
    stage = CompressionStage(CompressionSettings(max_bytes=1, quality=85, min_quality=45, quality_step=20))

    stage.compress(source)

    assert calls == [85, 65, 45]
