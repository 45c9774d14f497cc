"""
Configuration loader for collector runs.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

logger = logging.getLogger(__name__)


def load_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        config_path: Path to config file. If None, uses default config/collector.yaml

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the YAML root is not a mapping
    """
    if config_path is None:
        # Default to config/collector.yaml relative to project root
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config" / "collector.yaml"

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        config: dict[str, Any] = {}
    elif not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")
    else:
        config = cast(dict[str, Any], data)

    return cast(dict[str, Any], _substitute_env_vars(config))


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute ${VAR} patterns with environment variables."""
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    if isinstance(obj, str) and obj.startswith("${") and obj.endswith("}"):
        var_name = obj[2:-1]
        return os.getenv(var_name, obj)  # fall back to original if unset
    return obj


@dataclass(frozen=True)
class TorperfFile:
    """One measurement series pair served by a Torperf source."""

    source: str
    filesize: int
    data: str
    extradata: str


@dataclass(frozen=True)
class CollectorConfig:
    """Typed view over the YAML mapping with defaults for every key."""

    archives_directory: Path = Path("in/relay-descriptors/archives")
    keep_import_history: bool = True
    stats_directory: Path = Path("stats")
    directory_archives_output: Path = Path("out/relay-descriptors")
    database_directory: Path = Path("out/database")
    write_directory_archives: bool = True
    import_to_database: bool = True
    write_relay_stats: bool = True
    track_missing_descriptors: bool = True
    check_consensus_health: bool = True
    process_torperf_files: bool = True
    torperf_output_directory: Path = Path("out/torperf")
    torperf_sources: dict[str, str] = field(default_factory=dict)
    torperf_files: list[TorperfFile] = field(default_factory=list)
    download_timeout: float = 60.0
    lock_file: Path = Path("lock")
    log_directory: Path = Path("log")
    log_level: str = "INFO"

    @classmethod
    def from_mapping(cls, config: dict[str, Any]) -> CollectorConfig:
        """Build a config from a loaded YAML mapping.

        Malformed ``torperf_files`` entries are logged and dropped so that one
        bad line never disables the remaining sources.
        """
        defaults = cls()

        def _path(key: str) -> Path:
            return Path(config.get(key, getattr(defaults, key)))

        def _flag(key: str) -> bool:
            return bool(config.get(key, getattr(defaults, key)))

        sources = config.get("torperf_sources") or {}
        if not isinstance(sources, dict):
            logger.warning("torperf_sources must be a mapping, got %s; ignoring", type(sources).__name__)
            sources = {}

        files: list[TorperfFile] = []
        for entry in config.get("torperf_files") or []:
            try:
                files.append(
                    TorperfFile(
                        source=str(entry["source"]),
                        filesize=int(entry["filesize"]),
                        data=str(entry["data"]),
                        extradata=str(entry["extradata"]),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Could not parse torperf_files entry %r (%s). Skipping.", entry, exc)

        log_level = str(config.get("log_level", defaults.log_level)).upper()
        if not isinstance(logging.getLevelName(log_level), int):
            logger.warning("Unknown log_level %r; using %s.", log_level, defaults.log_level)
            log_level = defaults.log_level

        return cls(
            archives_directory=_path("archives_directory"),
            keep_import_history=_flag("keep_import_history"),
            stats_directory=_path("stats_directory"),
            directory_archives_output=_path("directory_archives_output"),
            database_directory=_path("database_directory"),
            write_directory_archives=_flag("write_directory_archives"),
            import_to_database=_flag("import_to_database"),
            write_relay_stats=_flag("write_relay_stats"),
            track_missing_descriptors=_flag("track_missing_descriptors"),
            check_consensus_health=_flag("check_consensus_health"),
            process_torperf_files=_flag("process_torperf_files"),
            torperf_output_directory=_path("torperf_output_directory"),
            torperf_sources={str(k): str(v) for k, v in sources.items()},
            torperf_files=files,
            download_timeout=float(config.get("download_timeout", defaults.download_timeout)),
            lock_file=_path("lock_file"),
            log_directory=_path("log_directory"),
            log_level=log_level,
        )
