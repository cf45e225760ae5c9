from __future__ import annotations

import json
from pathlib import Path

import pytest

from vaultingest.errors import ValidationError
from vaultingest.utils import load_manifest


def test_yaml_manifest_with_defaults(tmp_path: Path) -> None:
    manifest = tmp_path / "batch.yaml"
    manifest.write_text(
        "defaults:\n"
        "  model_base: SDXL\n"
        "  source: Artist\n"
        "files:\n"
        "  - images/cat.png\n"
        "  - path: images/dog.jpg\n"
        "    title: Good dog\n"
        "    source: Character\n"
        "    style_ref: '@someone'\n",
        encoding="utf-8",
    )

    entries = load_manifest(manifest)

    assert [entry.path for entry in entries] == [tmp_path / "images/cat.png", tmp_path / "images/dog.jpg"]
    cat, dog = (entry.metadata for entry in entries)
    assert cat.title == "cat"
    assert cat.model_base == "SDXL"
    assert dog.title == "Good dog"
    assert dog.source == "Character"
    assert dog.style_ref == "@someone"


def test_json_list_manifest(tmp_path: Path) -> None:
    absolute = tmp_path / "elsewhere" / "a.webp"
    manifest = tmp_path / "batch.json"
    manifest.write_text(json.dumps([{"path": str(absolute), "model_base": "Flux", "source": "Concept"}]), encoding="utf-8")

    entries = load_manifest(manifest)

    assert entries[0].path == absolute
    assert entries[0].metadata.model_base == "Flux"


def test_missing_manifest_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_manifest(tmp_path / "nope.yaml")


@pytest.mark.parametrize(
    "text",
    [
        "just a string",
        "files:\n  - title: no path\n",
        "defaults: [1, 2]\nfiles: []\n",
        "files: [unclosed",
    ],
)
def test_malformed_manifest_raises(tmp_path: Path, text: str) -> None:
    manifest = tmp_path / "batch.yaml"
    manifest.write_text(text, encoding="utf-8")

    with pytest.raises(ValidationError):
        load_manifest(manifest)
