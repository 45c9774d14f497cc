"""Tests for directory pruning and renaming helpers"""

import os

import pytest

from metrics_collector.cleanup import clean_dir, clean_dir_pattern, rename_files, rename_tmp_files

CUTOFF = 1_400_000_000


def _touch(path, mtime):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(path.name)
    os.utime(path, (mtime, mtime))


def test_clean_dir_removes_old_files(tmp_path):
    _touch(tmp_path / "a" / "old", CUTOFF - 10)
    _touch(tmp_path / "a" / "b" / "older", CUTOFF - 100)
    _touch(tmp_path / "new", CUTOFF + 10)

    assert clean_dir(tmp_path, CUTOFF) == 2
    assert [p.name for p in tmp_path.rglob("*") if p.is_file()] == ["new"]


def test_clean_dir_pattern_matches_suffix(tmp_path):
    _touch(tmp_path / "x.tpf", CUTOFF - 10)
    _touch(tmp_path / "x.TPF", CUTOFF - 10)
    _touch(tmp_path / "x.data", CUTOFF - 10)
    _touch(tmp_path / "y.tpf", CUTOFF + 10)

    assert clean_dir_pattern(tmp_path, CUTOFF, ".tpf") == 1
    assert sorted(p.name for p in tmp_path.iterdir()) == ["x.TPF", "x.data", "y.tpf"]


def test_rename_tmp_files_replaces_targets(tmp_path):
    _touch(tmp_path / "d" / "desc.tmp", CUTOFF)
    _touch(tmp_path / "d" / "other.tmp", CUTOFF)
    (tmp_path / "d" / "desc").write_text("stale")

    assert rename_tmp_files(tmp_path) == 2
    assert (tmp_path / "d" / "desc").read_text() == "desc.tmp"
    assert not list(tmp_path.rglob("*.tmp"))


def test_rename_files_requires_suffix(tmp_path):
    with pytest.raises(ValueError):
        rename_files(tmp_path, "")
