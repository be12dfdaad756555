# src/codejudge/executor/container.py
from __future__ import annotations
from pathlib import Path
from typing import List, Optional

import structlog

from ..core.errors import MetadataError, SandboxError, SandboxInitError
from ..core.models import BackendKind, ResourceLimits, TerminationCause, UsageReport
from ..runners.base import LanguageStrategy
from ..services.verdict import sanitize_output
from ..settings import ContainerConfig
from .base import BuildOutcome, Executor, RunOutcome
from .commands import CommandResult, CommandRunner

log = structlog.get_logger(__name__)

_DAEMON_ERRORS = ("Error response from daemon", "Cannot connect to the Docker daemon", "Error: No such container")


class ContainerExecutor(Executor):
    """
    Single-use container per submission, driven through the docker CLI.

    Build and run are fused: the container command compiles and then execs
    the program, so a compile failure only shows up as a non-zero exit plus
    compiler text in the output. The verdict resolver classifies it.
    Memory is enforced by the runtime when `enforce_memory` is on, but peak
    usage is never observed, so UsageReport.memory_observed is False.
    """
    kind = BackendKind.CONTAINER
    observes_memory = False

    def __init__(
        self,
        box_id: int,
        strategy: LanguageStrategy,
        cfg: ContainerConfig,
        *,
        runner: Optional[CommandRunner] = None,
    ):
        super().__init__(box_id, strategy)
        self.cfg = cfg
        self.runner = runner or CommandRunner()
        self.name = f"{cfg.name_prefix}-{box_id}"
        self.image = cfg.images.get(strategy.language.value, strategy.image)

        self._created = False
        self._result: CommandResult | None = None
        self._memory_enforced = False

    def _docker(self, *args: str, timeout: float = 60, input: bytes = b"", grace_s: float = 1.0) -> CommandResult:
        try:
            return self.runner.run([self.cfg.binary, *args], input=input, timeout=timeout, grace_s=grace_s)
        except OSError as e:
            raise SandboxError(f"cannot start {self.cfg.binary}: {e}") from e

    def _remove(self) -> CommandResult:
        return self._docker("rm", "--force", self.name)

    # ------------ lifecycle ------------

    def create_argv(self) -> List[str]:
        return [
            "create",
            "--name", self.name,
            "--interactive",
            "--rm",
            "--network", self.cfg.network,
            "--user", self.cfg.user,
            "--workdir", self.cfg.workdir,
            "--pids-limit", str(self.cfg.pids_limit),
            self.image,
            "sh", "-c", self.strategy.shell_pipeline(),
        ]

    def allocate(self) -> None:
        try:
            # a crashed earlier run may have left a container under this name
            self._remove()
            # create pulls the image if needed, so pull time never reaches the run clock
            res = self._docker(*self.create_argv(), timeout=600)
        except SandboxError as e:
            raise SandboxInitError(str(e)) from e
        if res.returncode != 0:
            raise SandboxInitError(f"docker create failed for {self.name}: {res.err.strip()}")
        self._created = True

    def build(self, source_file: Path) -> BuildOutcome:
        if not self._created:
            raise SandboxError("build() before allocate()")
        dest = f"{self.name}:{self.cfg.workdir.rstrip('/')}/{self.strategy.source_file_name}"
        res = self._docker("cp", str(source_file), dest)
        if res.returncode != 0:
            raise SandboxError(f"docker cp failed for {self.name}: {res.err.strip()}")
        # the compiler runs as part of run()
        return BuildOutcome(ok=True, fused=self.strategy.compiled)

    def _apply_memory(self, limits: ResourceLimits):
        if not self.cfg.enforce_memory:
            return
        mem = f"{limits.memory_kib}k"
        res = self._docker("update", "--memory", mem, "--memory-swap", mem, self.name)
        if res.returncode != 0:
            log.warning("container.memory_advisory", name=self.name, error=res.err.strip())
            return
        self._memory_enforced = True

    def run(self, stdin: str, limits: ResourceLimits) -> RunOutcome:
        if not self._created:
            raise SandboxError("run() before allocate()")
        self._apply_memory(limits)
        self._result = self._docker(
            "start", "--attach", "--interactive", self.name,
            input=stdin.encode("utf-8"),
            timeout=limits.wall_time_seconds,
            grace_s=self.cfg.grace_seconds,
        )
        res = self._result
        if res.timed_out:
            # killing the attached client does not stop the container
            self._remove()
        elif res.returncode != 0 and res.err.startswith(_DAEMON_ERRORS):
            raise SandboxError(f"docker start failed for {self.name}: {res.err.strip()}")
        return RunOutcome(
            backend=self.kind,
            stdout=sanitize_output(res.out),
            stderr=sanitize_output(res.err),
            exit_code=None if res.timed_out else res.returncode,
            truncated=res.truncated,
            fused_build=self.strategy.compiled,
        )

    def collect_usage(self) -> UsageReport:
        res = self._result
        if res is None:
            raise MetadataError("collect_usage() before run()")
        message = "" if self._memory_enforced else "memory limit is advisory for this backend"
        if res.timed_out:
            cause = TerminationCause.TIME_LIMIT_EXCEEDED
            code = signal = None
        elif res.returncode is not None and res.returncode > 128:
            # shell convention: 128 + signal number
            cause, code, signal = TerminationCause.SIGNALED, res.returncode, res.returncode - 128
        else:
            cause, code, signal = TerminationCause.EXITED, res.returncode, None
        return UsageReport(
            wall_time_used=res.elapsed_s,
            termination_cause=cause,
            exit_code=code,
            exit_signal=signal,
            message=message,
            memory_observed=False,
        )

    def release(self) -> None:
        if not self._created:
            return
        res = self._remove()
        self._created = False
        # --rm usually got there first
        if res.returncode != 0 and "No such container" not in res.err:
            raise SandboxError(f"docker rm failed for {self.name}: {res.err.strip()}")
