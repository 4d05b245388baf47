"""Version Utilities Module."""

from functools import lru_cache
from pathlib import Path

import tomlkit

__all__ = ["get_git_hash", "get_pyproject_version"]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


@lru_cache(maxsize=1)
def get_pyproject_version(root: Path = _PROJECT_ROOT) -> str:
    """Get ReelSync's version from the pyproject.toml file.

    Args:
        root (Path): Directory containing ``pyproject.toml``

    Returns:
        str: ReelSync's version, or ``"unknown"`` if it cannot be determined
    """
    toml_file = root / "pyproject.toml"
    if not toml_file.is_file():
        return "unknown"

    with toml_file.open(encoding="utf-8") as f:
        toml_data = tomlkit.load(f)

    project = toml_data.get("project", {})
    return str(project.get("version", "unknown"))


@lru_cache(maxsize=1)
def get_git_hash(root: Path = _PROJECT_ROOT) -> str:
    """Get the git commit hash of the checked out ReelSync repository.

    Args:
        root (Path): Directory containing the ``.git`` folder

    Returns:
        str: Current commit hash, or ``"unknown"`` outside a git checkout
    """
    git_dir = root / ".git"
    head_file = git_dir / "HEAD"
    if not head_file.is_file():
        return "unknown"

    head = head_file.read_text(encoding="utf-8").strip()
    if not head.startswith("ref: "):
        return head or "unknown"  # detached HEAD

    ref_path = git_dir / head.removeprefix("ref: ")
    if not ref_path.is_file():
        return "unknown"
    return ref_path.read_text(encoding="utf-8").strip()
