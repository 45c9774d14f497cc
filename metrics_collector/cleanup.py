"""Age- and suffix-based pruning and renaming below a directory tree."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)


def _files(directory: Path) -> Iterator[Path]:
    for root, _dirs, names in os.walk(directory):
        for name in names:
            yield Path(root) / name


def clean_dir(directory: Path | str, cutoff: float) -> int:
    """Delete every file below ``directory`` last modified before ``cutoff`` (epoch seconds)."""
    removed = 0
    for path in _files(Path(directory)):
        if path.stat().st_mtime < cutoff:
            path.unlink()
            removed += 1
    logger.debug("Removed %d files older than %s from %s.", removed, cutoff, directory)
    return removed


def clean_dir_pattern(directory: Path | str, cutoff: float, *suffixes: str) -> int:
    """Like :func:`clean_dir`, restricted to names ending in one of ``suffixes`` (case sensitive)."""
    removed = 0
    for path in _files(Path(directory)):
        if path.name.endswith(suffixes) and path.stat().st_mtime < cutoff:
            path.unlink()
            removed += 1
    logger.debug("Removed %d files ending in %s from %s.", removed, suffixes, directory)
    return removed


def rename_files(directory: Path | str, suffix: str) -> int:
    """Rename ``<name><suffix>`` to ``<name>``, replacing any existing target."""
    if not suffix:
        raise ValueError("suffix must not be empty")
    renamed = 0
    for path in list(_files(Path(directory))):
        if path.name.endswith(suffix):
            os.replace(path, path.with_name(path.name[: -len(suffix)]))
            renamed += 1
    return renamed


def rename_tmp_files(directory: Path | str) -> int:
    return rename_files(directory, ".tmp")
