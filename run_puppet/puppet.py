"""
Puppet — Run ``puppet apply`` against the cloned manifests.

Puppet inherits our stdio so its output lands in the same journal/terminal.
Its exit code is the run's result. A non-zero code is puppet's verdict on
the catalog, not a failure of this tool.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .errors import ApplyLaunchError

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "VAULT_TOKEN"


def build_apply_args(manifest_path: Path, noop: bool, syslog: bool) -> List[str]:
    """Argument list for the puppet binary."""
    manifest_path = Path(manifest_path)
    args = [
        "apply",
        "--config", str(manifest_path / "puppet.conf"),
        "-vvvt",
        str(manifest_path / "manifests" / "site.pp"),
    ]
    if noop:
        args.append("--noop")
    if syslog:
        args.extend(["--logdest", "syslog"])
    return args


def build_apply_env(token: str, base_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """The inherited environment plus the vault token."""
    env = dict(os.environ if base_env is None else base_env)
    env[TOKEN_ENV_VAR] = token
    return env


def run_puppet_apply(
    bin_path: str,
    manifest_path: Path,
    token: str,
    noop: bool,
    syslog: bool,
) -> int:
    """
    Run puppet and return its exit code.

    A child killed by a signal reports ``128 + signum``, like a shell does.

    Raises:
        ApplyLaunchError: the binary could not be executed at all
    """
    cmd = [bin_path] + build_apply_args(manifest_path, noop=noop, syslog=syslog)
    logger.info(f"[puppet] Running: {' '.join(cmd)}")

    try:
        completed = subprocess.run(cmd, env=build_apply_env(token), check=False)
    except OSError as e:
        raise ApplyLaunchError(f"executing {bin_path} failed: {e}") from e

    code = completed.returncode
    if code < 0:
        try:
            name = signal.Signals(-code).name
        except ValueError:
            name = str(-code)
        logger.warning(f"[puppet] Killed by signal {name}")
        return 128 - code

    if code == 0:
        logger.info("[puppet] Finished successfully")
    else:
        logger.info(f"[puppet] Finished with exit code {code}")
    return code
