from __future__ import annotations
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import structlog

from ..core.errors import JudgeError, SandboxError, SandboxInitError
from ..core.models import BackendKind, ExecutionResult, Submission
from ..core.utils import BoxIdPool, new_submission_id
from ..executor.base import BuildOutcome, Executor, RunOutcome
from ..executor.container import ContainerExecutor
from ..executor.commands import CommandRunner
from ..executor.isolate import IsolateExecutor
from ..runners import languages
from ..runners.base import LanguageStrategy
from ..settings import Settings, load_settings
from .storage import LocalFSStorage
from .verdict import resolve_verdict

log = structlog.get_logger(__name__)

ExecutorFactory = Callable[[int, LanguageStrategy], Executor]


def make_executor_factory(s: Settings) -> ExecutorFactory:
    """Backend is chosen by configuration, never by the submission."""
    runner = CommandRunner(max_output_bytes=s.max_output_bytes)

    if s.backend == BackendKind.CONTAINER:
        def factory(box_id: int, strategy: LanguageStrategy) -> Executor:
            return ContainerExecutor(box_id, strategy, s.container, runner=runner)
    else:
        def factory(box_id: int, strategy: LanguageStrategy) -> Executor:
            return IsolateExecutor(
                box_id, strategy, s.isolate, build_timeout_s=s.build_timeout_seconds, runner=runner,
            )
    return factory


class Orchestrator:
    """
    judge(submission) -> ExecutionResult

    validate limits -> resolve language -> stage source -> take a box id ->
    allocate -> build -> run -> collect usage -> verdict, with release of the
    unit guaranteed on every path once allocate succeeded.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        executor_factory: Optional[ExecutorFactory] = None,
        storage: Optional[LocalFSStorage] = None,
        pool: Optional[BoxIdPool] = None,
    ):
        self.s = settings or load_settings()
        self.executor_factory = executor_factory or make_executor_factory(self.s)
        self.storage = storage or LocalFSStorage(self.s.staging_dir)
        self.pool = pool or BoxIdPool(self.s.unit_id_base, self.s.unit_count)

    @contextmanager
    def execution_unit(self, strategy: LanguageStrategy, *, log=log) -> Iterator[Executor]:
        box_id = self.pool.acquire(timeout=self.s.acquire_timeout_seconds)
        try:
            unit = self.executor_factory(box_id, strategy)
            unit.allocate()
            log.info("unit.allocated", box_id=box_id, backend=unit.kind.value)
            try:
                yield unit
            finally:
                # also runs on cancellation (KeyboardInterrupt, GeneratorExit)
                try:
                    unit.release()
                    log.info("unit.released", box_id=box_id)
                except SandboxError as e:
                    log.error("unit.release_failed", box_id=box_id, error=str(e))
        finally:
            # the id only goes back after teardown finished
            self.pool.release(box_id)

    def judge(self, submission: Submission) -> ExecutionResult:
        try:
            submission.limits.validate()
            strategy = languages.resolve(submission.language)
        except JudgeError as e:
            log.warning("judge.rejected", language=submission.language, error=str(e))
            raise

        submission_id = new_submission_id()
        jlog = log.bind(submission_id=submission_id, language=strategy.language.value, backend=self.s.backend.value)
        source = self.storage.stage(submission_id, strategy.source_file_name, submission.source_code)
        try:
            with self.execution_unit(strategy, log=jlog) as unit:
                result = self._drive(unit, submission, strategy, source, jlog)
        except (SandboxInitError, SandboxError) as e:
            jlog.error("unit.init_failed", error=str(e))
            result = resolve_verdict(submission, strategy, backend=self.s.backend, error=e)
        finally:
            self.storage.discard(submission_id)

        jlog.info("judge.verdict", verdict=result.verdict.value)
        return result

    def _drive(self, unit: Executor, submission: Submission, strategy: LanguageStrategy, source, jlog) -> ExecutionResult:
        build: Optional[BuildOutcome] = None
        run: Optional[RunOutcome] = None
        usage = None
        error: Optional[SandboxError] = None
        try:
            build = unit.build(source)
            if not build.ok:
                jlog.info("build.failed", box_id=unit.box_id)
            else:
                run = unit.run(submission.stdin, submission.limits)
                usage = unit.collect_usage()
                jlog.info(
                    "run.finished",
                    box_id=unit.box_id,
                    cause=usage.termination_cause.value,
                    cpu=usage.cpu_time_used,
                    wall=round(usage.wall_time_used, 3),
                    mem_kib=usage.max_memory_kib,
                )
        except SandboxError as e:
            jlog.error("unit.sandbox_error", box_id=unit.box_id, error=str(e))
            error = e
        return resolve_verdict(
            submission, strategy, backend=unit.kind, build=build, run=run, usage=usage, error=error,
        )
