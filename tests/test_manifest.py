"""Tests for manifest entries, hashing and the wire format."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from fileferry.manifest import (
    Manifest,
    ManifestEntry,
    compute_file_hash,
    is_unsafe_name,
    normalize_name,
)

EMPTY_MD5 = "d41d8cd98f00b204e9800998ecf8427e"


def test_compute_file_hash_of_empty_file(tmp_path: Path):
    empty = tmp_path / "a.txt"
    empty.write_bytes(b"")

    assert compute_file_hash(empty) == EMPTY_MD5


def test_compute_file_hash_is_independent_of_chunk_size(tmp_path: Path):
    blob = tmp_path / "blob.bin"
    blob.write_bytes(bytes(range(256)) * 100)

    assert compute_file_hash(blob, chunk_size=7) == compute_file_hash(blob)


def test_manifest_serializes_to_name_md5_objects():
    manifest = Manifest([
        ManifestEntry("a.txt", EMPTY_MD5),
        ManifestEntry("sub/c.bin", "0cc175b9c0f1b6a831c399e269772661"),
    ])

    assert json.loads(manifest.to_json()) == [
        {"name": "a.txt", "md5": EMPTY_MD5},
        {"name": "sub/c.bin", "md5": "0cc175b9c0f1b6a831c399e269772661"},
    ]


def test_from_json_normalizes_names_and_hash_case():
    manifest = Manifest.from_json(
        '[{"name": "sub\\\\c.bin", "md5": "0CC175B9C0F1B6A831C399E269772661"}]'
    )

    entry = manifest.get("sub/c.bin")
    assert entry is not None
    assert entry.content_hash == "0cc175b9c0f1b6a831c399e269772661"


def test_empty_array_is_an_empty_manifest():
    manifest = Manifest.from_json("[]")

    assert len(manifest) == 0
    assert manifest.to_json() == "[]"


def test_duplicate_names_keep_the_last_entry():
    manifest = Manifest([
        ManifestEntry("a.txt", "1" * 32),
        ManifestEntry("a.txt", "2" * 32),
    ])

    assert len(manifest) == 1
    assert manifest.get("a.txt").content_hash == "2" * 32


@pytest.mark.parametrize(
    "payload",
    [
        '{"name": "a.txt", "md5": "x"}',
        '["a.txt"]',
        '[{"name": "a.txt"}]',
        '[{"name": 3, "md5": "x"}]',
        "not json",
    ],
)
def test_from_json_rejects_malformed_payloads(payload: str):
    with pytest.raises(ValueError):
        Manifest.from_json(payload)


@pytest.mark.parametrize(
    "name",
    ["../secret.txt", "sub/../../x", "/etc/passwd", "..\\win.ini", "C:\\boot.ini", "C:relative"],
)
def test_is_unsafe_name_flags_escaping_paths(name: str):
    assert is_unsafe_name(name)


@pytest.mark.parametrize("name", ["a.txt", "sub/dir/c.bin", "..hidden", "dots..in..name"])
def test_is_unsafe_name_accepts_relative_paths(name: str):
    assert not is_unsafe_name(name)


def test_normalize_name_uses_forward_slashes():
    assert normalize_name("./sub\\dir\\c.bin") == "sub/dir/c.bin"
