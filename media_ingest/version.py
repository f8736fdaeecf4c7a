"""Version information for media-ingest."""

import subprocess
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional

__version__ = "0.4.0"

DIST_NAME = "media-ingest"
CHECKOUT_DIR = Path(__file__).resolve().parent.parent


def installed_version() -> str:
    """Version recorded by the installed distribution, else the module constant."""
    try:
        return version(DIST_NAME)
    except PackageNotFoundError:
        return __version__


def get_git_hash(repo_dir: Optional[Path] = None) -> Optional[str]:
    """Short commit hash of a source checkout, None when not running from one."""
    repo_dir = repo_dir or CHECKOUT_DIR
    if not (repo_dir / ".git").exists():
        return None
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short=7", "HEAD"],
            cwd=repo_dir,
            capture_output=True,
            text=True,
            check=True,
            timeout=2,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        return None
    return result.stdout.strip() or None


def get_version_string() -> str:
    """Version for ``--version`` and worker logs, e.g. "0.4.0 (git:abc1234)"."""
    git_hash = get_git_hash()
    if git_hash:
        return f"{installed_version()} (git:{git_hash})"
    return installed_version()
