# src/codejudge/executor/isolate.py
from __future__ import annotations
import shutil
from pathlib import Path
from typing import List, Optional

import structlog

from ..core.errors import MetadataError, SandboxError, SandboxInitError
from ..core.models import BackendKind, ResourceLimits, TerminationCause, UsageReport
from ..runners.base import LanguageStrategy
from ..settings import IsolateConfig
from .base import BuildOutcome, Executor, RunOutcome
from .commands import CommandResult, CommandRunner
from .meta import usage_from_meta

log = structlog.get_logger(__name__)

# isolate --run exit status for its own failures (as opposed to the program's)
ISOLATE_INTERNAL_ERROR = 2


def _fmt_seconds(value: float) -> str:
    return f"{value:g}"


class IsolateExecutor(Executor):
    """
    Process sandbox backed by the `isolate` tool.

      - allocate: isolate --init (box dir printed on stdout)
      - build:    copy source into the box, compile inside the box without the submission's ceilings
      - run:      isolate --run with --time/--wall-time/--mem and a --meta record
      - release:  isolate --cleanup
    """
    kind = BackendKind.ISOLATE

    @property
    def observes_memory(self) -> bool:
        # --mem alone is an address-space cap; only cgroups report the oom kill
        return self.cfg.use_cgroups

    def __init__(
        self,
        box_id: int,
        strategy: LanguageStrategy,
        cfg: IsolateConfig,
        *,
        build_timeout_s: float = 30.0,
        runner: Optional[CommandRunner] = None,
    ):
        super().__init__(box_id, strategy)
        self.cfg = cfg
        self.build_timeout_s = build_timeout_s
        self.runner = runner or CommandRunner()

        self.box_dir: Path | None = None
        self.meta_path = Path(cfg.meta_dir) / f"box-{box_id}.meta"
        self._limits: ResourceLimits | None = None
        self._watchdog_wall: float | None = None

    # ------------ helpers ------------

    def _base(self) -> List[str]:
        argv = [self.cfg.binary, f"--box-id={self.box_id}"]
        if self.cfg.use_cgroups:
            argv.append("--cg")
        return argv

    def _resolve(self, cmd) -> List[str]:
        # isolate execs argv[0] as given; bare names are resolved on the host,
        # whose /usr and /bin are bound into the box
        prog, *rest = cmd
        if "/" not in prog:
            prog = shutil.which(prog, path=self.cfg.path_env) or f"/usr/bin/{prog}"
        return [prog, *rest]

    def _force_teardown(self):
        log.warning("isolate.force_teardown", box_id=self.box_id)
        self.runner.run([*self._base(), "--cleanup"], timeout=self.cfg.grace_seconds * 5)

    # ------------ lifecycle ------------

    def allocate(self) -> None:
        # host-side state first: nothing to undo if it fails
        try:
            self.meta_path.parent.mkdir(parents=True, exist_ok=True)
            self.meta_path.unlink(missing_ok=True)
        except OSError as e:
            raise SandboxInitError(f"cannot prepare meta dir {self.meta_path.parent}: {e}") from e

        try:
            res = self.runner.run([*self._base(), "--init"], timeout=30)
        except OSError as e:
            raise SandboxInitError(f"cannot start {self.cfg.binary}: {e}") from e
        if res.returncode != 0:
            raise SandboxInitError(f"isolate --init failed for box {self.box_id}: {res.err.strip() or res.returncode}")

        root = res.out.strip().splitlines()[-1] if res.out.strip() else str(Path(self.cfg.box_root) / str(self.box_id))
        self.box_dir = Path(root) / "box"

    def build(self, source_file: Path) -> BuildOutcome:
        if self.box_dir is None:
            raise SandboxError("build() before allocate()")
        try:
            shutil.copyfile(source_file, self.box_dir / self.strategy.source_file_name)
        except OSError as e:
            raise SandboxError(f"cannot stage source into box {self.box_id}: {e}") from e

        if not self.strategy.compiled:
            return BuildOutcome(ok=True)

        argv = [
            *self._base(),
            f"--processes={self.cfg.build_processes}",
            f"--env=PATH={self.cfg.path_env}",
            "--run", "--",
            *self._resolve(self.strategy.build_command),
        ]
        res = self._exec(argv, timeout=self.build_timeout_s)
        if res.returncode == ISOLATE_INTERNAL_ERROR:
            raise SandboxError(f"isolate failed while building: {res.err.strip()}")
        if res.returncode != 0 or res.timed_out:
            compile_output = res.err or res.out or f"compiler exited with status {res.returncode}"
            return BuildOutcome(ok=False, compile_output=compile_output)
        return BuildOutcome(ok=True, compile_output=res.err)

    def _run_argv(self, limits: ResourceLimits) -> List[str]:
        processes = max(self.cfg.run_processes, self.strategy.run_processes)
        mem_flag = "--cg-mem" if self.cfg.use_cgroups else "--mem"
        return [
            *self._base(),
            f"--meta={self.meta_path}",
            f"--time={_fmt_seconds(limits.cpu_time_seconds)}",
            f"--wall-time={_fmt_seconds(limits.wall_time_seconds)}",
            f"--extra-time={_fmt_seconds(self.cfg.extra_time_seconds)}",
            f"{mem_flag}={limits.memory_kib}",
            f"--processes={processes}",
            f"--env=PATH={self.cfg.path_env}",
            "--run", "--",
            *self._resolve(self.strategy.run_command),
        ]

    def _exec(self, argv: List[str], timeout: float, stdin: str = "") -> CommandResult:
        try:
            return self.runner.run(
                argv,
                input=stdin.encode("utf-8"),
                timeout=timeout,
                grace_s=self.cfg.grace_seconds,
                on_kill=self._force_teardown,
            )
        except OSError as e:
            raise SandboxError(f"cannot start {self.cfg.binary}: {e}") from e

    def run(self, stdin: str, limits: ResourceLimits) -> RunOutcome:
        if self.box_dir is None:
            raise SandboxError("run() before allocate()")
        self._limits = limits
        # isolate enforces the ceilings itself; this deadline only catches a wedged isolate
        deadline = limits.wall_time_seconds + self.cfg.extra_time_seconds + self.cfg.grace_seconds
        res = self._exec(self._run_argv(limits), timeout=deadline, stdin=stdin)
        self._watchdog_wall = res.elapsed_s if res.timed_out else None
        return RunOutcome(
            backend=self.kind,
            stdout=res.out,
            stderr=res.err,
            exit_code=res.returncode,
            truncated=res.truncated,
        )

    def collect_usage(self) -> UsageReport:
        if self._limits is None:
            raise MetadataError("collect_usage() before run()")
        try:
            text = self.meta_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            if self._watchdog_wall is not None:
                # isolate itself was killed past the deadline, no record was written
                return UsageReport(
                    wall_time_used=self._watchdog_wall,
                    termination_cause=TerminationCause.TIME_LIMIT_EXCEEDED,
                    message="killed after wall-time deadline",
                    memory_observed=self.observes_memory,
                )
            raise MetadataError(f"isolate meta record {self.meta_path} is missing") from None
        return usage_from_meta(text, memory_limit_kib=self._limits.memory_kib, memory_observed=self.observes_memory)

    def release(self) -> None:
        if self.box_dir is None:
            return
        try:
            res = self.runner.run([*self._base(), "--cleanup"], timeout=30)
        except OSError as e:
            raise SandboxError(f"cannot start {self.cfg.binary}: {e}") from e
        finally:
            self.meta_path.unlink(missing_ok=True)
        self.box_dir = None
        if res.returncode != 0:
            raise SandboxError(f"isolate --cleanup failed for box {self.box_id}: {res.err.strip()}")
