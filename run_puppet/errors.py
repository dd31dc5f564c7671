"""
Errors — Failure tiers of a puppet run.

Library code raises these; only the CLI turns them into exit codes.
"""

from __future__ import annotations


class RunPuppetError(Exception):
    """Base class for all run-puppet failures."""

    exit_code = 1


class CloneError(RunPuppetError):
    """The manifest repository could not be (re)cloned."""


class CredentialError(RunPuppetError):
    """AppRole credentials could not be read or exchanged. Unrecoverable."""

    exit_code = 2


class VaultError(CredentialError):
    """The vault login call failed."""


class ApplyLaunchError(RunPuppetError):
    """The puppet binary could not be started."""
