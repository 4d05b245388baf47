"""Tests for version utility helpers."""

from pathlib import Path

import pytest

from src.utils.version import get_git_hash, get_pyproject_version


@pytest.fixture(autouse=True)
def clear_version_caches() -> None:
    """Clear the cached version lookups before each test."""
    get_pyproject_version.cache_clear()
    get_git_hash.cache_clear()


def test_get_pyproject_version_reads_project_table(tmp_path: Path) -> None:
    """The version comes from the [project] table."""
    (tmp_path / "pyproject.toml").write_text(
        '[project]\nname = "ReelSync"\nversion = "2.4.1"\n', encoding="utf-8"
    )

    assert get_pyproject_version(tmp_path) == "2.4.1"


def test_get_pyproject_version_unknown_without_file(tmp_path: Path) -> None:
    """A missing pyproject.toml yields ``unknown``."""
    assert get_pyproject_version(tmp_path) == "unknown"


def test_get_git_hash_follows_branch_ref(tmp_path: Path) -> None:
    """HEAD pointing at a branch resolves through the ref file."""
    git_dir = tmp_path / ".git"
    (git_dir / "refs" / "heads").mkdir(parents=True)
    (git_dir / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    (git_dir / "refs" / "heads" / "main").write_text("a1b2c3d4\n", encoding="utf-8")

    assert get_git_hash(tmp_path) == "a1b2c3d4"


def test_get_git_hash_detached_head(tmp_path: Path) -> None:
    """A detached HEAD holds the hash directly."""
    git_dir = tmp_path / ".git"
    git_dir.mkdir()
    (git_dir / "HEAD").write_text("deadbeef\n", encoding="utf-8")

    assert get_git_hash(tmp_path) == "deadbeef"


@pytest.mark.parametrize("head", [None, "ref: refs/heads/gone\n"])
def test_get_git_hash_unknown(tmp_path: Path, head: str | None) -> None:
    """No checkout or a dangling ref yields ``unknown``."""
    if head is not None:
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "HEAD").write_text(head, encoding="utf-8")

    assert get_git_hash(tmp_path) == "unknown"
