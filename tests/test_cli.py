"""Tests for the command-line entry points."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from rich.console import Console

from fileferry import cli
from fileferry.client import FileFailure, SyncResult


@pytest.fixture(autouse=True)
def _restore_logger():
    yield
    logger = logging.getLogger("fileferry")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


def _config(tmp_path: Path, content: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "fileferry.yml").write_text(content, encoding="utf-8")
    return config_dir


def test_manifest_command_prints_tree_manifest(tmp_path: Path, capsys):
    root = tmp_path / "tree"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"")
    (root / "sub" / "c.bin").write_bytes(b"a")

    assert cli.main(["manifest", str(root)]) == cli.EXIT_OK

    payload = json.loads(capsys.readouterr().out)
    assert payload == [
        {"name": "a.txt", "md5": "d41d8cd98f00b204e9800998ecf8427e"},
        {"name": "sub/c.bin", "md5": "0cc175b9c0f1b6a831c399e269772661"},
    ]
    assert not (root / ".fileferry-manifest.json").exists()


def test_manifest_command_rejects_missing_directory(tmp_path: Path):
    assert cli.main(["manifest", str(tmp_path / "nope")]) == cli.EXIT_ABORTED


def test_invalid_configuration_aborts(tmp_path: Path):
    config_dir = _config(tmp_path, "server:\n  gate_policy: drop\n")

    assert cli.main(["--config", str(config_dir), "sync"]) == cli.EXIT_ABORTED


def test_sync_with_unreachable_manifest_aborts(tmp_path: Path):
    config_dir = _config(
        tmp_path,
        "client:\n  manifest_url: http://127.0.0.1:9/\n  connect_timeout: 2\n",
    )

    code = cli.main(["--config", str(config_dir), "sync", "--target", str(tmp_path / "mirror")])

    assert code == cli.EXIT_ABORTED


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_render_result_lists_failures():
    console = Console(record=True, width=120)
    result = SyncResult(
        success=False,
        checked=3,
        queued=2,
        downloaded=1,
        failed=[FileFailure("broken.txt", "HTTP 404 Not Found", 3)],
        message="1 files failed; 1 downloaded",
    )

    cli.render_result(console, result)

    text = console.export_text()
    assert "incomplete" in text
    assert "broken.txt" in text
    assert "HTTP 404 Not Found" in text
