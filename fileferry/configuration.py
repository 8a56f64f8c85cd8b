"""YAML configuration loading and typed settings for fileferry."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple

import yaml

logger = logging.getLogger("fileferry.configuration")

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
CONFIG_DIR_ENV = "FILEFERRY_CONFIG_DIR"

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]
GatePolicy = Literal["wait", "reject"]

SchemaSpec = Dict[str, Any]

DEFAULT_BUFFER_SIZE = 81920


CONFIG_SCHEMA: SchemaSpec = {
    "server": {
        "type": dict,
        "schema": {
            "host": {"type": str, "default": ""},
            "port": {"type": int, "default": 8080, "min": 1},
            "files_dir": {"type": str, "default": "./files/"},
            "cache_file": {"type": str, "default": "jsoncache.json"},
            "rebuild_interval": {"type": (int, float), "default": 3600, "min": 0},
            "max_concurrent_downloads": {"type": int, "default": 50, "min": 0},
            "gate_policy": {"type": str, "default": "wait", "choices": ("wait", "reject")},
            "max_file_size": {"type": int, "default": 0, "min": 0},
            "path_traversal_protection": {"type": bool, "default": True},
            "compression": {"type": bool, "default": True},
            "stream_buffer_size": {"type": int, "default": DEFAULT_BUFFER_SIZE, "min": 1},
            "cors_allowed_origins": {
                "type": list,
                "item_type": str,
                "default_factory": lambda: ["*"],
            },
            "request_logging": {"type": bool, "default": True},
        },
        "default": {},
    },
    "client": {
        "type": dict,
        "schema": {
            "manifest_url": {"type": str, "default": ""},
            "target_dir": {"type": str, "default": "."},
            "diff_workers": {"type": int, "default": 4, "min": 1},
            "download_workers": {"type": int, "default": 4, "min": 1},
            "max_attempts": {"type": int, "default": 3, "min": 1},
            "connect_timeout": {"type": (int, float), "default": 10, "min": 0},
            "transfer_timeout": {"type": (int, float), "default": 60, "min": 0},
            "buffer_size": {"type": int, "default": DEFAULT_BUFFER_SIZE, "min": 1},
            "progress_interval": {"type": (int, float), "default": 0.5, "min": 0},
            "verify_downloads": {"type": bool, "default": True},
            "retry_backoff": {"type": (int, float), "default": 0.5, "min": 0},
        },
        "default": {},
    },
    "logging": {
        "type": dict,
        "schema": {
            "level": {"type": str, "default": "INFO"},
            "file": {"type": str, "default": ""},
            "structured": {"type": bool, "default": False},
        },
        "default": {},
    },
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """Merged configuration plus everything learned while loading it."""

    config_dir: Path
    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None

    @property
    def base_dir(self) -> Path:
        """Directory that relative paths in the configuration resolve against."""
        return self.config_dir


@dataclass
class ServerSettings:
    """Settings consumed by the manifest builder and the file server."""

    host: str = ""
    port: int = 8080
    files_dir: Path = Path("files")
    cache_file: Path = Path("jsoncache.json")
    rebuild_interval: float = 3600
    max_concurrent_downloads: int = 50
    gate_policy: GatePolicy = "wait"
    max_file_size: int = 0
    path_traversal_protection: bool = True
    compression: bool = True
    stream_buffer_size: int = DEFAULT_BUFFER_SIZE
    cors_allowed_origins: Tuple[str, ...] = ("*",)
    request_logging: bool = True

    @classmethod
    def from_config(cls, config: Mapping[str, Any], base_dir: Path) -> "ServerSettings":
        raw = config.get("server", {}) if config else {}
        raw = raw or {}
        return cls(
            host=str(raw.get("host", "")),
            port=int(raw.get("port", 8080)),
            files_dir=_resolve_path(base_dir, raw.get("files_dir", "./files/")),
            cache_file=_resolve_path(base_dir, raw.get("cache_file", "jsoncache.json")),
            rebuild_interval=float(raw.get("rebuild_interval", 3600)),
            max_concurrent_downloads=int(raw.get("max_concurrent_downloads", 50)),
            gate_policy="reject" if raw.get("gate_policy") == "reject" else "wait",
            max_file_size=int(raw.get("max_file_size", 0)),
            path_traversal_protection=bool(raw.get("path_traversal_protection", True)),
            compression=bool(raw.get("compression", True)),
            stream_buffer_size=int(raw.get("stream_buffer_size", DEFAULT_BUFFER_SIZE)),
            cors_allowed_origins=tuple(raw.get("cors_allowed_origins", ["*"])),
            request_logging=bool(raw.get("request_logging", True)),
        )


@dataclass
class ClientSettings:
    """Settings consumed by the sync client."""

    manifest_url: str = ""
    target_dir: Path = Path(".")
    diff_workers: int = 4
    download_workers: int = 4
    max_attempts: int = 3
    connect_timeout: float = 10.0
    transfer_timeout: float = 60.0
    buffer_size: int = DEFAULT_BUFFER_SIZE
    progress_interval: float = 0.5
    verify_downloads: bool = True
    retry_backoff: float = 0.5

    @classmethod
    def from_config(cls, config: Mapping[str, Any], base_dir: Path) -> "ClientSettings":
        raw = config.get("client", {}) if config else {}
        raw = raw or {}
        return cls(
            manifest_url=str(raw.get("manifest_url", "")),
            target_dir=_resolve_path(base_dir, raw.get("target_dir", ".")),
            diff_workers=max(1, int(raw.get("diff_workers", 4))),
            download_workers=max(1, int(raw.get("download_workers", 4))),
            max_attempts=max(1, int(raw.get("max_attempts", 3))),
            connect_timeout=float(raw.get("connect_timeout", 10)),
            transfer_timeout=float(raw.get("transfer_timeout", 60)),
            buffer_size=int(raw.get("buffer_size", DEFAULT_BUFFER_SIZE)),
            progress_interval=float(raw.get("progress_interval", 0.5)),
            verify_downloads=bool(raw.get("verify_downloads", True)),
            retry_backoff=float(raw.get("retry_backoff", 0.5)),
        )

    @property
    def file_base_url(self) -> str:
        """Base URL for ``/file/{path}`` requests, derived from the manifest URL."""
        return self.manifest_url.rstrip("/") + "/file/"


def resolve_config_dir(
    env: Optional[Mapping[str, str]] = None,
    default: Optional[Path] = None,
) -> Path:
    """Resolve the configuration directory from the environment."""

    env_source = env if env is not None else os.environ
    raw = env_source.get(CONFIG_DIR_ENV)
    if raw:
        return Path(raw).expanduser()
    return default or DEFAULT_CONFIG_DIR


def load_configuration(config_dir: Optional[Path] = None) -> ConfigurationBundle:
    """Load and validate every YAML file under the configuration directory."""

    resolved = (config_dir or resolve_config_dir()).expanduser()
    diagnostics: List[Diagnostic] = []
    status: ConfigurationStatus = "ready"

    if not resolved.exists():
        diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"Configuration directory '{resolved}' does not exist; using defaults.",
                source=resolved,
            )
        )
        status = "missing"
        merged: Dict[str, Any] = {}
        files_loaded: List[Path] = []
    else:
        merged, files_loaded = _load_directory_configs(resolved, diagnostics)

    _validate_schema(merged, diagnostics)

    if any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        config_dir=resolved.resolve(),
        status=status,
        merged=merged,
        files_loaded=files_loaded,
        diagnostics=diagnostics,
    )


def log_diagnostics(bundle: ConfigurationBundle) -> None:
    """Emit each load-time diagnostic once through the logging system."""

    levels = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}
    for diag in bundle.diagnostics:
        logger.log(levels.get(diag.level, logging.INFO), "%s", diag.message)


def _resolve_path(base_dir: Path, raw: Any) -> Path:
    path = Path(str(raw)).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()


def _load_directory_configs(
    directory: Path,
    diagnostics: List[Diagnostic],
) -> Tuple[Dict[str, Any], List[Path]]:
    """Load all YAML files from a directory, merging them in order."""

    data: Dict[str, Any] = {}
    loaded_files: List[Path] = []

    if not directory.is_dir():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Configuration path '{directory}' is not a directory.",
                source=directory,
            )
        )
        return data, loaded_files

    yaml_files = sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml"))

    for yaml_file in yaml_files:
        try:
            content = yaml.safe_load(yaml_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"Failed to parse '{yaml_file}': {exc}",
                    source=yaml_file,
                )
            )
            continue

        if content is None:
            loaded_files.append(yaml_file)
            continue

        if not isinstance(content, MutableMapping):
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Ignoring '{yaml_file}' because it does not contain a mapping.",
                    source=yaml_file,
                )
            )
            continue

        _deep_merge_dicts(data, dict(content))
        loaded_files.append(yaml_file)

    if not loaded_files:
        diagnostics.append(
            Diagnostic(
                level="info",
                message=f"No YAML files found under '{directory}'; using defaults.",
                source=directory,
            )
        )

    return data, loaded_files


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    """Recursively merge mapping values."""

    for key, value in source.items():
        if (
            key in dest
            and isinstance(dest[key], MutableMapping)
            and isinstance(value, Mapping)
        ):
            _deep_merge_dicts(dest[key], value)
        else:
            dest[key] = deepcopy(value)


def _default_from_spec(spec: SchemaSpec) -> Any:
    if "default_factory" in spec and callable(spec["default_factory"]):
        return spec["default_factory"]()
    return deepcopy(spec.get("default"))


def _validate_schema(config: Dict[str, Any], diagnostics: List[Diagnostic]) -> None:
    _validate_section(config, CONFIG_SCHEMA, "config", diagnostics)


def _type_matches(value: Any, expected_type: Any) -> bool:
    # bool is an int subclass; a YAML "yes" must not pass as a port number
    if isinstance(value, bool):
        types = expected_type if isinstance(expected_type, tuple) else (expected_type,)
        return bool in types
    return isinstance(value, expected_type)


def _validate_section(
    target: Dict[str, Any],
    schema: SchemaSpec,
    path: str,
    diagnostics: List[Diagnostic],
) -> None:
    if not isinstance(target, dict):
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Configuration section '{path}' must be a mapping.",
            )
        )
        return

    for key in list(target.keys()):
        if key not in schema:
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Unknown configuration key '{path}.{key}'.",
                )
            )

    for key, spec in schema.items():
        child_path = f"{path}.{key}"
        if key not in target:
            if "default" in spec or "default_factory" in spec:
                target[key] = _default_from_spec(spec)
                if spec.get("type") is dict:
                    _validate_section(target[key], spec.get("schema", {}), child_path, diagnostics)
            continue

        value = target[key]
        expected_type = spec.get("type")

        if expected_type is dict:
            if not isinstance(value, dict):
                diagnostics.append(
                    Diagnostic(
                        level="error",
                        message=f"'{child_path}' must be a mapping.",
                    )
                )
                target[key] = _default_from_spec(spec) or {}
                value = target[key]
            _validate_section(value, spec.get("schema", {}), child_path, diagnostics)
        elif expected_type is list:
            if not isinstance(value, list):
                diagnostics.append(
                    Diagnostic(
                        level="error",
                        message=f"'{child_path}' must be a list.",
                    )
                )
                target[key] = _default_from_spec(spec) or []
                continue
            item_type = spec.get("item_type")
            if item_type is not None:
                filtered: List[Any] = []
                for idx, item in enumerate(value):
                    if isinstance(item, item_type):
                        filtered.append(item)
                    else:
                        diagnostics.append(
                            Diagnostic(
                                level="error",
                                message=(
                                    f"'{child_path}[{idx}]' must be of type "
                                    f"{item_type.__name__}."
                                ),
                            )
                        )
                target[key] = filtered
        elif expected_type and not _type_matches(value, expected_type):
            if isinstance(expected_type, tuple):
                type_name = ", ".join(t.__name__ for t in expected_type)
            else:
                type_name = expected_type.__name__
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"'{child_path}' must be of type {type_name}.",
                )
            )
            target[key] = _default_from_spec(spec)
        elif "choices" in spec and value not in spec["choices"]:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=(
                        f"'{child_path}' must be one of "
                        f"{', '.join(spec['choices'])}; got '{value}'."
                    ),
                )
            )
            target[key] = _default_from_spec(spec)
        elif "min" in spec and value < spec["min"]:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"'{child_path}' must be at least {spec['min']}.",
                )
            )
            target[key] = _default_from_spec(spec)


__all__ = [
    "CONFIG_SCHEMA",
    "ClientSettings",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "ServerSettings",
    "load_configuration",
    "log_diagnostics",
    "resolve_config_dir",
]
