"""Tests for manifest building and the atomically published cache."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Dict

import pytest

from fileferry.errors import CacheRebuildError
from fileferry.manifest import Manifest, ManifestEntry
from fileferry.server import builder as builder_module
from fileferry.server.builder import ManifestBuilder, ManifestCache


def _tree(root: Path, files: Dict[str, bytes]) -> Path:
    for name, data in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return root


def _builder(tmp_path: Path, files: Dict[str, bytes]) -> ManifestBuilder:
    root = _tree(tmp_path / "files", files)
    return ManifestBuilder(root, ManifestCache(tmp_path / "jsoncache.json"))


def test_rebuild_publishes_every_file_with_forward_slash_names(tmp_path: Path):
    builder = _builder(tmp_path, {"a.txt": b"", "sub/deeper/c.bin": b"a"})

    manifest = builder.rebuild()

    assert manifest is not None
    assert json.loads(builder.cache.path.read_text(encoding="utf-8")) == [
        {"name": "a.txt", "md5": "d41d8cd98f00b204e9800998ecf8427e"},
        {"name": "sub/deeper/c.bin", "md5": "0cc175b9c0f1b6a831c399e269772661"},
    ]
    assert builder.last_count == 2
    assert not builder.cache.temp_path.exists()


def test_cache_inside_served_root_is_not_listed(tmp_path: Path):
    root = _tree(tmp_path / "files", {"a.txt": b"a"})
    builder = ManifestBuilder(root, ManifestCache(root / "jsoncache.json"))

    builder.rebuild()
    manifest = builder.rebuild()

    assert manifest.names() == ["a.txt"]


def test_missing_root_is_created_and_publishes_empty_manifest(tmp_path: Path):
    builder = ManifestBuilder(tmp_path / "absent", ManifestCache(tmp_path / "cache.json"))

    manifest = builder.rebuild()

    assert manifest is not None and len(manifest) == 0
    assert (tmp_path / "absent").is_dir()
    assert builder.cache.read_text() == "[]"


def test_unreadable_file_is_skipped(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    builder = _builder(tmp_path, {"good.txt": b"ok", "bad.txt": b"locked"})
    original = builder_module.compute_file_hash

    def flaky_hash(path, chunk_size):
        if Path(path).name == "bad.txt":
            raise PermissionError("locked")
        return original(path, chunk_size)

    monkeypatch.setattr(builder_module, "compute_file_hash", flaky_hash)

    manifest = builder.rebuild()

    assert manifest.names() == ["good.txt"]


def test_read_text_without_cache_is_empty_array(tmp_path: Path):
    cache = ManifestCache(tmp_path / "never-written.json")

    assert not cache.exists()
    assert cache.read_text() == "[]"
    assert len(cache.load()) == 0


def test_failed_publish_keeps_previous_cache(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    builder = _builder(tmp_path, {"a.txt": b"a"})
    builder.rebuild()
    before = builder.cache.path.read_text(encoding="utf-8")

    (tmp_path / "files" / "b.txt").write_bytes(b"b")

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(builder_module.os, "replace", broken_replace)

    assert builder.rebuild() is None
    assert builder.cache.path.read_text(encoding="utf-8") == before
    assert not builder.cache.temp_path.exists()
    assert builder.last_count == 1


def test_publish_raises_cache_rebuild_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    cache = ManifestCache(tmp_path / "cache.json")

    def broken_fsync(fd):
        raise OSError("io error")

    monkeypatch.setattr(builder_module.os, "fsync", broken_fsync)

    with pytest.raises(CacheRebuildError):
        cache.publish(Manifest([ManifestEntry("a.txt", "0" * 32)]))
    assert not cache.exists()


def test_concurrent_trigger_is_ignored(tmp_path: Path):
    builder = _builder(tmp_path, {"a.txt": b"a"})

    with builder._lock:
        assert builder.running
        assert builder.rebuild() is None
    assert not builder.cache.exists()

    assert builder.rebuild() is not None


def test_cancelled_rebuild_does_not_publish(tmp_path: Path):
    builder = _builder(tmp_path, {"a.txt": b"a"})
    builder.cancel_event.set()

    assert builder.rebuild() is None
    assert not builder.cache.exists()


def test_readers_never_observe_a_partial_manifest(tmp_path: Path):
    builder = _builder(tmp_path, {f"f{i:03d}.txt": b"x" * i for i in range(200)})
    builder.rebuild()
    stop = threading.Event()
    counts = []
    errors = []

    def reader() -> None:
        while True:
            try:
                counts.append(len(Manifest.from_json(builder.cache.read_text())))
            except ValueError as exc:
                errors.append(exc)
            if stop.is_set():
                return

    thread = threading.Thread(target=reader)
    thread.start()
    try:
        for round_number in range(5):
            _tree(tmp_path / "files", {f"extra{round_number}.txt": b"new"})
            builder.rebuild()
    finally:
        stop.set()
        thread.join()

    assert not errors
    assert counts
    assert set(counts) <= set(range(200, 206))


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlink_escaping_root_is_not_listed(tmp_path: Path):
    outside = tmp_path / "outside.txt"
    outside.write_bytes(b"secret")
    builder = _builder(tmp_path, {"a.txt": b"a"})
    try:
        os.symlink(outside, tmp_path / "files" / "link.txt")
    except OSError:
        pytest.skip("cannot create symlinks here")

    manifest = builder.rebuild()

    assert manifest.names() == ["a.txt"]
