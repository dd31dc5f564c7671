"""
run-puppet — CLI Entry Point

Usage:
    run-puppet [--now] [--noop] [--no-clone] [--puppet-branch BRANCH] ...
    python -m run_puppet.main --help

Every option can also be set through its RUN_PUPPET_* environment variable,
and those can live in a dotenv file (RUN_PUPPET_ENV_FILE, default
/etc/default/run-puppet).

Exit codes:
    N    puppet's own exit code
    1    cloning the manifests or launching puppet failed
    2    vault credentials failed, or invalid usage
    130  interrupted
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from pydantic import ValidationError

from . import __build_date__, __built_by__, __commit__, __version__
from .config import (
    DEFAULT_BIN_PATH,
    DEFAULT_BRANCH,
    DEFAULT_DISABLE_FILE,
    DEFAULT_LOCAL_REPO_PATH,
    DEFAULT_MAX_DELAY_SECONDS,
    DEFAULT_REMOTE_REPO_URL,
    DEFAULT_ROLE_ID_FILE,
    DEFAULT_SECRET_ID_FILE,
    DEFAULT_VAULT_URL,
    RunnerConfig,
    apply_disable_sentinel,
)
from .errors import CredentialError, RunPuppetError
from .logging_config import setup_logging
from .observability.tracing import get_tracer, new_tracer_provider
from .runner import Runner

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILE = "/etc/default/run-puppet"

EXIT_INTERRUPTED = 130


def load_env_file(path: Optional[str] = None) -> Optional[Path]:
    """Load the dotenv file, without overriding the real environment."""
    env_file = Path(path or os.environ.get("RUN_PUPPET_ENV_FILE", DEFAULT_ENV_FILE))
    if not env_file.is_file():
        return None
    load_dotenv(env_file, override=False)
    return env_file


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"]) or "config"
        problems.append(f"{field}: {item['msg']}")
    return "; ".join(problems)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--bin-path", default=DEFAULT_BIN_PATH, show_default=True,
              envvar="RUN_PUPPET_BIN_PATH", help="Path to puppet binary")
@click.option("--local-repo-path", default=DEFAULT_LOCAL_REPO_PATH, show_default=True,
              envvar="RUN_PUPPET_LOCAL_REPO_PATH", help="Local path for the checked out puppet manifests")
@click.option("--remote-repo-url", default=DEFAULT_REMOTE_REPO_URL, show_default=True,
              envvar="RUN_PUPPET_REMOTE_REPO_URL", help="Puppet repository to use")
@click.option("--puppet-branch", default=DEFAULT_BRANCH, show_default=True,
              envvar="RUN_PUPPET_BRANCH", help="Puppet branch to use")
@click.option("--vault-url", default=DEFAULT_VAULT_URL, show_default=True,
              envvar="RUN_PUPPET_VAULT_URL", help="URL of the vault instance")
@click.option("--role-id-file", default=DEFAULT_ROLE_ID_FILE, show_default=True,
              envvar="RUN_PUPPET_ROLE_ID_FILE", help="Path to the vault AppRole role id file")
@click.option("--secret-id-file", default=DEFAULT_SECRET_ID_FILE, show_default=True,
              envvar="RUN_PUPPET_SECRET_ID_FILE", help="Path to the vault AppRole secret id file")
@click.option("--approle-mount", default="approle", show_default=True,
              envvar="RUN_PUPPET_APPROLE_MOUNT", help="Mount path of the AppRole auth method")
@click.option("--clone/--no-clone", default=True, show_default=True,
              envvar="RUN_PUPPET_CLONE", help="Do a fresh clone of the manifest repository")
@click.option("--now", is_flag=True, envvar="RUN_PUPPET_NOW", help="Skip the random delay")
@click.option("-n", "--noop", is_flag=True, envvar="RUN_PUPPET_NOOP", help="Don't apply puppet changes")
@click.option("--disable-file", default=DEFAULT_DISABLE_FILE, show_default=True,
              envvar="RUN_PUPPET_DISABLE_FILE", help="If this file exists, always run with --noop")
@click.option("--max-delay", type=int, default=DEFAULT_MAX_DELAY_SECONDS, show_default=True,
              envvar="RUN_PUPPET_MAX_DELAY", help="Upper bound of the random delay in seconds")
@click.option("--clone-timeout", type=int, default=600, show_default=True,
              envvar="RUN_PUPPET_CLONE_TIMEOUT", help="Seconds before git clone is aborted")
@click.option("--vault-timeout", type=float, default=30.0, show_default=True,
              envvar="RUN_PUPPET_VAULT_TIMEOUT", help="Seconds before the vault login is aborted")
@click.option("--metrics-file", default=None, envvar="RUN_PUPPET_METRICS_FILE",
              help="Write Prometheus metrics to this file after the run")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("--debug", is_flag=True, envvar="RUN_PUPPET_DEBUG",
              help="Debug logging and span export to stderr")
@click.option("--log-format", type=click.Choice(["text", "json"]), default=None,
              envvar="LOG_FORMAT", help="Log output format")
@click.version_option(
    __version__,
    "-V",
    "--version",
    prog_name="run-puppet",
    message=f"%(prog)s %(version)s (commit {__commit__}, built {__build_date__} by {__built_by__})",
)
@click.pass_context
def cli(
    ctx: click.Context,
    bin_path: str,
    local_repo_path: str,
    remote_repo_url: str,
    puppet_branch: str,
    vault_url: str,
    role_id_file: str,
    secret_id_file: str,
    approle_mount: str,
    clone: bool,
    now: bool,
    noop: bool,
    disable_file: str,
    max_delay: int,
    clone_timeout: int,
    vault_timeout: float,
    metrics_file: Optional[str],
    verbose: int,
    debug: bool,
    log_format: Optional[str],
) -> None:
    """Clone the puppet manifests, log in to vault and run puppet apply."""
    setup_logging(format_type=log_format, verbosity=verbose, debug=debug)

    try:
        config = RunnerConfig(
            bin_path=bin_path,
            local_repo_path=local_repo_path,
            remote_repo_url=remote_repo_url,
            branch=puppet_branch,
            vault_url=vault_url,
            role_id_file=role_id_file,
            secret_id_file=secret_id_file,
            approle_mount=approle_mount,
            clone=clone,
            now=now,
            noop=noop,
            disable_file=disable_file,
            max_delay_seconds=max_delay,
            clone_timeout_seconds=clone_timeout,
            vault_timeout_seconds=vault_timeout,
            metrics_file=metrics_file,
        )
    except ValidationError as e:
        raise click.UsageError(_format_validation_error(e), ctx=ctx) from e

    config = apply_disable_sentinel(config)

    provider = new_tracer_provider(debug=debug)
    runner = Runner(config, tracer=get_tracer(provider))

    try:
        code = runner.run()
    except CredentialError as e:
        logger.critical(f"Failed getting vault token: {e}")
        code = e.exit_code
    except RunPuppetError as e:
        logger.error(f"Puppet run failed: {e}")
        code = e.exit_code
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        code = EXIT_INTERRUPTED
    finally:
        # Flush batched spans before exiting
        provider.shutdown()

    ctx.exit(code)


def main() -> None:
    """Console script entry point."""
    load_env_file()
    cli()


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
