"""
Manifest Repo — Fresh shallow clone of the puppet manifests.

Every run throws the old working copy away and clones the requested branch
again, so local drift on the host never leaks into a puppet run.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from .errors import CloneError

logger = logging.getLogger(__name__)


def _git(
    *args: str,
    cwd: Optional[Path] = None,
    timeout: int = 30,
    capture: bool = True,
) -> subprocess.CompletedProcess:
    """
    Run a git command and return the completed process.

    With capture=False git writes to the inherited stdout/stderr, so clone
    progress shows up in the run's output and the result carries no text.
    """
    cmd = ["git"] + list(args)
    logger.debug(f"Running git command: {' '.join(cmd)}")
    return subprocess.run(
        cmd,
        cwd=str(cwd) if cwd else None,
        capture_output=capture,
        text=True,
        timeout=timeout,
    )


def remove_local_copy(local_path: Path) -> None:
    """Delete whatever sits at local_path (tree, file or symlink)."""
    if local_path.is_symlink() or local_path.is_file():
        local_path.unlink()
    elif local_path.exists():
        shutil.rmtree(local_path)


def clone_repo(
    local_path: Path,
    remote_url: str,
    branch: str,
    timeout: int = 600,
) -> Optional[str]:
    """
    Replace local_path with a depth-1 clone of branch.

    Returns the short commit hash of the checkout, or None when it can't
    be resolved.

    Raises:
        CloneError: removal of the old copy or the clone itself failed
    """
    local_path = Path(local_path)

    try:
        remove_local_copy(local_path)
    except OSError as e:
        raise CloneError(f"failed removing local copy {local_path}: {e}") from e

    logger.info(f"[repo] Cloning {remote_url} ({branch}) → {local_path}")

    try:
        result = _git(
            "clone",
            "--depth", "1",
            "--single-branch",
            "--branch", branch,
            remote_url,
            str(local_path),
            timeout=timeout,
            capture=False,
        )
    except FileNotFoundError as e:
        raise CloneError(f"git executable not found: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise CloneError(f"git clone timed out after {timeout}s") from e

    if result.returncode != 0:
        error = (result.stderr or "").strip() or f"git exited with code {result.returncode}"
        raise CloneError(f"git clone of {remote_url} ({branch}) failed: {error}")

    commit = head_commit(local_path)
    logger.info(f"[repo] Checked out {branch} at {commit or 'unknown commit'}")
    return commit


def head_commit(local_path: Path) -> Optional[str]:
    """Short hash of HEAD in local_path, or None."""
    try:
        result = _git("rev-parse", "--short=12", "HEAD", cwd=local_path, timeout=5)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None
