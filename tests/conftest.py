"""
Shared fixtures for run-puppet tests.

Provides AppRole credential files, a config factory pointing every path
into tmp_path, a stub puppet binary that records how it was called, and an
in-memory span exporter.
"""

from __future__ import annotations

import logging
import stat
from pathlib import Path

import pytest

from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from run_puppet.config import RunnerConfig
from run_puppet.observability.tracing import get_tracer, new_tracer_provider

ROLE_ID = "6f1c2a9e-0d8b-4c1e-9f3a-2b7d5e8c4a10"
SECRET_ID = "d41d8cd9-8f00-4b20-9e98-0998ecf8427e"


@pytest.fixture(autouse=True)
def restore_root_logger():
    """CLI tests reconfigure the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def approle_ids():
    """(role_id, secret_id) stored in credential_files."""
    return ROLE_ID, SECRET_ID


@pytest.fixture
def credential_files(tmp_path: Path):
    """Role id and secret id files as written by the provisioning."""
    role_id_file = tmp_path / "vault_role_id"
    secret_id_file = tmp_path / "vault_secret_id"
    role_id_file.write_text(ROLE_ID + "\n")
    secret_id_file.write_text(SECRET_ID + "\n")
    return role_id_file, secret_id_file


@pytest.fixture
def make_config(tmp_path: Path, credential_files):
    """Factory for a RunnerConfig that only touches tmp_path."""
    role_id_file, secret_id_file = credential_files

    def _make(**overrides) -> RunnerConfig:
        values = dict(
            bin_path=str(tmp_path / "bin" / "puppet"),
            local_repo_path=tmp_path / "puppet-repo",
            remote_repo_url="https://git.example.com/infra/puppet.git",
            branch="main",
            vault_url="https://vault.example.com:8200",
            role_id_file=role_id_file,
            secret_id_file=secret_id_file,
            disable_file=tmp_path / "puppet_disable",
            now=True,
        )
        values.update(overrides)
        return RunnerConfig(**values)

    return _make


@pytest.fixture
def stub_puppet(tmp_path: Path):
    """
    Write an executable shell script standing in for puppet.

    It records its arguments (one per line) to args.txt and the
    VAULT_TOKEN it saw to token.txt, then exits with the given code.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(exit_code: int = 0) -> Path:
        script = bin_dir / "puppet"
        script.write_text(
            "#!/bin/sh\n"
            f"printf '%s\\n' \"$@\" > '{bin_dir}/args.txt'\n"
            f"printf '%s' \"$VAULT_TOKEN\" > '{bin_dir}/token.txt'\n"
            f"exit {exit_code}\n"
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


@pytest.fixture
def spans():
    """
    Tracer exporting every finished span to memory.

    Yields (tracer, exporter); read spans with exporter.get_finished_spans().
    """
    exporter = InMemorySpanExporter()
    provider = new_tracer_provider(exporter=exporter, batch=False)
    yield get_tracer(provider), exporter
    provider.shutdown()
