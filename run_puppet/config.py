"""
Runner Config — The flat configuration record of a puppet run.

Built once from CLI flags / environment by ``run_puppet.main`` and consumed
once by the runner.

## Usage

    from run_puppet.config import RunnerConfig, apply_disable_sentinel

    config = apply_disable_sentinel(RunnerConfig(branch="main", now=True))
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_BIN_PATH = "/opt/puppetlabs/bin/puppet"
DEFAULT_LOCAL_REPO_PATH = "/var/lib/puppet-repo"
DEFAULT_REMOTE_REPO_URL = "https://github.com/gentoomaniac/puppet.git"
DEFAULT_VAULT_URL = "https://vault.srv.gentoomaniac.net"
DEFAULT_ROLE_ID_FILE = "/etc/vault_role_id"
DEFAULT_SECRET_ID_FILE = "/etc/vault_secret_id"
DEFAULT_DISABLE_FILE = "/etc/puppet_disable"
DEFAULT_BRANCH = "master"
DEFAULT_MAX_DELAY_SECONDS = 5 * 60

GIT_URL_SCHEMES = {"http", "https", "ssh", "git", "file"}

# git@github.com:owner/repo.git
_SCP_LIKE_URL = re.compile(r"^[\w.\-]+@[\w.\-]+:.+$")


class RunnerConfig(BaseModel):
    """Everything a single puppet run needs."""

    bin_path: str = DEFAULT_BIN_PATH
    local_repo_path: Path = Path(DEFAULT_LOCAL_REPO_PATH)
    remote_repo_url: str = DEFAULT_REMOTE_REPO_URL
    branch: str = DEFAULT_BRANCH

    vault_url: str = DEFAULT_VAULT_URL
    role_id_file: Path = Path(DEFAULT_ROLE_ID_FILE)
    secret_id_file: Path = Path(DEFAULT_SECRET_ID_FILE)
    approle_mount: str = "approle"

    clone: bool = True
    now: bool = False
    noop: bool = False

    disable_file: Path = Path(DEFAULT_DISABLE_FILE)
    max_delay_seconds: int = Field(default=DEFAULT_MAX_DELAY_SECONDS, ge=0)
    clone_timeout_seconds: int = Field(default=600, gt=0)
    vault_timeout_seconds: float = Field(default=30.0, gt=0)

    metrics_file: Optional[Path] = None

    @field_validator("bin_path", "branch")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("remote_repo_url")
    @classmethod
    def _valid_repo_url(cls, value: str) -> str:
        value = value.strip()
        if _SCP_LIKE_URL.match(value):
            return value
        parsed = urlparse(value)
        if parsed.scheme not in GIT_URL_SCHEMES:
            raise ValueError(f"unsupported repository URL: {value!r}")
        if parsed.scheme != "file" and not parsed.netloc:
            raise ValueError(f"repository URL has no host: {value!r}")
        return value

    @field_validator("vault_url")
    @classmethod
    def _valid_vault_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"vault URL must be http(s)://host[:port]: {value!r}")
        return value.rstrip("/")

    @field_validator("approle_mount")
    @classmethod
    def _valid_mount(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def puppet_conf_path(self) -> Path:
        return self.local_repo_path / "puppet.conf"

    @property
    def site_manifest_path(self) -> Path:
        return self.local_repo_path / "manifests" / "site.pp"

    @property
    def syslog(self) -> bool:
        """Scheduled (jittered) runs log to syslog, interactive ones don't."""
        return not self.now


def apply_disable_sentinel(config: RunnerConfig) -> RunnerConfig:
    """
    Force dry-run when the disable sentinel exists.

    The sentinel wins over any flag: an operator touching the file must be
    able to stop puppet from changing the host.
    """
    # A sentinel that cannot be stat()ed (e.g. EACCES) counts as absent
    if not os.path.exists(config.disable_file):
        return config

    logger.info(f"`{config.disable_file}` found. Running with --noop.")
    if config.noop:
        return config
    return config.model_copy(update={"noop": True})
