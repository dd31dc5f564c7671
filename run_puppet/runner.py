"""
Runner — One scheduled puppet run.

Each run:
1. Sleeps a random delay (unless ``now``)
2. Re-clones the manifest repository (if ``clone``)
3. Logs in to vault with the AppRole credentials
4. Runs ``puppet apply`` with the vault token
5. Returns puppet's exit code

There is no retry and no partial recovery: the first failing step aborts
the run and its error propagates to the caller. Every step gets a span
and a duration metric.

## Usage

    from run_puppet.runner import Runner

    code = Runner(config).run()
"""

from __future__ import annotations

import logging
import random
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional
from uuid import uuid4

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

from . import puppet, repo, vault
from .config import RunnerConfig
from .errors import RunPuppetError
from .observability.metrics import MetricsRegistry
from .observability.tracing import get_tracer

logger = logging.getLogger(__name__)

STEP_DELAY = "delay"
STEP_CLONE = "clone"
STEP_CREDENTIALS = "credentials"
STEP_APPLY = "apply"


@dataclass
class RunResult:
    """What happened during a run."""

    run_id: str
    started_at: str
    ended_at: Optional[str] = None
    duration_ms: int = 0

    noop: bool = False
    delay_seconds: float = 0.0
    commit: Optional[str] = None

    exit_code: Optional[int] = None
    failed_step: Optional[str] = None
    error: Optional[str] = None


def generate_run_id() -> str:
    """Generate a unique run ID, e.g. R-20260204T221903-92929A."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    suffix = uuid4().hex[:6].upper()
    return f"R-{ts}-{suffix}"


def random_delay(max_seconds: int, rng: Optional[random.Random] = None) -> float:
    """A duration drawn uniformly from [0, max_seconds)."""
    if max_seconds <= 0:
        return 0.0
    return (rng or random).random() * max_seconds


class Runner:
    """Sequences delay, clone, vault login and puppet apply."""

    def __init__(
        self,
        config: RunnerConfig,
        tracer: Optional[trace.Tracer] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.config = config
        self.tracer = tracer or get_tracer()
        self.metrics = metrics or MetricsRegistry()
        self.result: Optional[RunResult] = None

    def run(self) -> int:
        """
        Execute the run and return puppet's exit code.

        Raises:
            CloneError: the manifest clone failed
            CredentialError: credentials could not be read or exchanged
            ApplyLaunchError: puppet could not be started
        """
        cfg = self.config
        start_time = time.time()
        result = RunResult(
            run_id=generate_run_id(),
            started_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            noop=cfg.noop,
        )
        self.result = result

        self._log(
            logging.INFO,
            f"Starting run {result.run_id} "
            f"(branch={cfg.branch}, clone={cfg.clone}, now={cfg.now}, noop={cfg.noop})",
        )
        self.metrics.increment("runs_total")
        self.metrics.set_gauge("noop", 1 if cfg.noop else 0)

        try:
            with self.tracer.start_as_current_span(
                "runner.run", attributes={"noop": cfg.noop, "runId": result.run_id}
            ) as span:
                if not cfg.now:
                    with self._step(STEP_DELAY) as step_span:
                        result.delay_seconds = self._delay(step_span)

                if cfg.clone:
                    with self._step(STEP_CLONE) as step_span:
                        result.commit = self._clone(step_span)

                with self._step(STEP_CREDENTIALS) as step_span:
                    token = self._get_token(step_span)

                with self._step(STEP_APPLY) as step_span:
                    result.exit_code = self._apply(step_span, token)

                span.set_attribute("exitCode", result.exit_code)
                span.set_status(Status(StatusCode.OK))
        except RunPuppetError as e:
            result.error = str(e)
            self.metrics.increment("errors_total", labels={"step": result.failed_step or "unknown"})
            raise
        finally:
            result.ended_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            result.duration_ms = int((time.time() - start_time) * 1000)
            self._finish_metrics(result)

        self._log(
            logging.INFO,
            f"Run {result.run_id} finished in {result.duration_ms}ms with exit code {result.exit_code}",
        )
        return result.exit_code

    @contextmanager
    def _step(self, name: str) -> Iterator[Span]:
        started = time.monotonic()
        try:
            # An escaping exception marks the span ERROR and records it
            with self.tracer.start_as_current_span(f"runner.{name}") as span:
                yield span
                span.set_status(Status(StatusCode.OK))
        except Exception:
            self.result.failed_step = name
            self._log(logging.DEBUG, f"Step {name} failed, aborting run", step=name)
            raise
        finally:
            self.metrics.timing(
                "step_duration_seconds", time.monotonic() - started, labels={"step": name}
            )

    def _delay(self, span: Span) -> float:
        delay = random_delay(self.config.max_delay_seconds)
        span.set_attribute("delaySeconds", round(delay, 3))
        self._log(logging.INFO, f"Sleeping {delay:.1f}s before the run", step=STEP_DELAY)
        time.sleep(delay)
        return delay

    def _clone(self, span: Span) -> Optional[str]:
        cfg = self.config
        span.set_attribute("gitRemoteUrl", cfg.remote_repo_url)
        span.set_attribute("gitBranch", cfg.branch)
        commit = repo.clone_repo(
            cfg.local_repo_path,
            cfg.remote_repo_url,
            cfg.branch,
            timeout=cfg.clone_timeout_seconds,
        )
        if commit:
            span.set_attribute("gitCommit", commit)
        return commit

    def _get_token(self, span: Span) -> str:
        cfg = self.config
        span.set_attribute("vaultAddress", cfg.vault_url)
        span.set_attribute("vaultRoleIdFile", str(cfg.role_id_file))
        span.set_attribute("vaultSecretIdFile", str(cfg.secret_id_file))

        role_id = vault.read_approle_id(cfg.role_id_file)
        secret_id = vault.read_approle_id(cfg.secret_id_file)
        return vault.get_token(
            cfg.vault_url,
            role_id,
            secret_id,
            mount=cfg.approle_mount,
            timeout=cfg.vault_timeout_seconds,
        )

    def _apply(self, span: Span, token: str) -> int:
        cfg = self.config
        span.set_attribute("noop", cfg.noop)
        span.set_attribute("syslog", cfg.syslog)
        code = puppet.run_puppet_apply(
            cfg.bin_path,
            cfg.local_repo_path,
            token,
            noop=cfg.noop,
            syslog=cfg.syslog,
        )
        # A non-zero puppet exit is still a successful execution
        span.set_attribute("exitCode", code)
        return code

    def _finish_metrics(self, result: RunResult) -> None:
        self.metrics.set_gauge("delay_seconds", result.delay_seconds)
        self.metrics.set_gauge("last_run_timestamp_seconds", time.time())
        if result.exit_code is not None:
            self.metrics.set_gauge("last_exit_code", result.exit_code)

        if self.config.metrics_file is None:
            return
        try:
            self.metrics.write_textfile(self.config.metrics_file)
        except OSError as e:
            self._log(logging.WARNING, f"Could not write metrics to {self.config.metrics_file}: {e}")

    def _log(self, level: int, message: str, step: Optional[str] = None) -> None:
        extra = {"run_id": self.result.run_id if self.result else None}
        if step:
            extra["step"] = step
        logger.log(level, message, extra=extra)
