"""Runs the uvicorn-backed server in the background and syncs from it over real HTTP."""

from __future__ import annotations

import socket
import time
from pathlib import Path

from fileferry.client import ManifestFetcher, SyncClient
from fileferry.configuration import ClientSettings, ServerSettings
from fileferry.server import FileServer, ServerState


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _server_settings(tmp_path: Path) -> ServerSettings:
    files_dir = tmp_path / "served"
    (files_dir / "nested").mkdir(parents=True)
    (files_dir / "a.txt").write_bytes(b"")
    (files_dir / "nested" / "big.bin").write_bytes(bytes(range(256)) * 512)
    return ServerSettings(
        host="127.0.0.1",
        port=_free_port(),
        files_dir=files_dir,
        cache_file=tmp_path / "cache.json",
        rebuild_interval=0,
        request_logging=False,
    )


def _wait_for_manifest(url: str, expected: int, timeout: float = 10.0) -> None:
    fetcher = ManifestFetcher(url, timeout=2)
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if len(fetcher.fetch()) == expected:
            return
        time.sleep(0.05)
    raise AssertionError(f"manifest at {url} never listed {expected} files")


def test_background_server_serves_a_full_sync(tmp_path: Path):
    server = FileServer(_server_settings(tmp_path))

    assert server.start()
    try:
        assert server.state is ServerState.RUNNING
        status = server.status()
        assert status["state"] == "running"
        manifest_url = status["url"] + "/"
        _wait_for_manifest(manifest_url, expected=2)

        target = tmp_path / "mirror"
        settings = ClientSettings(manifest_url=manifest_url, target_dir=target, retry_backoff=0)
        result = SyncClient(settings).run()

        assert result.success, result.failed
        assert result.downloaded == 2
        assert (target / "a.txt").read_bytes() == b""
        assert (target / "nested" / "big.bin").read_bytes() == bytes(range(256)) * 512
    finally:
        assert server.stop()

    assert server.state is ServerState.STOPPED
    assert server.status()["url"] is None


def test_start_twice_and_stop_when_idle_are_refused(tmp_path: Path):
    server = FileServer(_server_settings(tmp_path))

    assert not server.stop()

    assert server.start()
    try:
        assert not server.start()
    finally:
        server.stop()
    assert server.state is ServerState.STOPPED
