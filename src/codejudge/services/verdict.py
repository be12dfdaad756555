"""
Verdict resolution.

Turns what a backend reported (build outcome, run outcome, usage, or the
infrastructure error that interrupted them) into exactly one verdict.
Checks run in a fixed priority order and the first match wins:

  1. sandbox init / sandbox error
  2. compile error
  3. time limit
  4. memory limit (only where the backend observes memory)
  5. runtime error (signal or non-zero exit)
  6. accepted / wrong answer, when an expected output was supplied
  7. completed, otherwise
"""
from __future__ import annotations
import re
from typing import Optional

from ..core.errors import JudgeError, SandboxInitError
from ..core.models import (
    BackendKind,
    ExecutionResult,
    Submission,
    TerminationCause,
    UsageReport,
    Verdict,
)
from ..executor.base import BuildOutcome, RunOutcome
from ..runners.base import LanguageStrategy

# everything except printable ASCII, \n and \r
_NON_PRINTABLE = re.compile(r"[^\x20-\x7e\n\r]")


def sanitize_output(text: str) -> str:
    return _NON_PRINTABLE.sub("", text)


def normalize_for_compare(text: str) -> str:
    """Drop trailing whitespace per line and trailing blank lines; everything else stays exact."""
    lines = text.replace("\r\n", "\n").split("\n")
    return "\n".join(line.rstrip() for line in lines).rstrip("\n")


def outputs_match(actual: str, expected: str) -> bool:
    return normalize_for_compare(sanitize_output(actual)) == normalize_for_compare(expected)


def _fused_compile_failure(strategy: LanguageStrategy, run: RunOutcome, usage: UsageReport) -> bool:
    # heuristic: a container reports compile failures only as exit status + compiler text
    if not run.fused_build or usage.termination_cause != TerminationCause.EXITED:
        return False
    if not usage.exit_code:
        return False
    return strategy.looks_like_compile_failure(run.stderr + "\n" + run.stdout)


def _memory_exceeded(usage: UsageReport, memory_kib: int) -> bool:
    if usage.termination_cause == TerminationCause.MEMORY_LIMIT_EXCEEDED:
        return True
    return usage.memory_observed and usage.max_memory_kib is not None and usage.max_memory_kib >= memory_kib


def resolve_verdict(
    submission: Submission,
    strategy: LanguageStrategy,
    *,
    backend: Optional[BackendKind] = None,
    build: Optional[BuildOutcome] = None,
    run: Optional[RunOutcome] = None,
    usage: Optional[UsageReport] = None,
    error: Optional[JudgeError] = None,
) -> ExecutionResult:
    stdout = run.stdout if run else ""
    stderr = run.stderr if run else ""
    truncated = bool(run and run.truncated)

    def result(verdict: Verdict, **kw) -> ExecutionResult:
        kw.setdefault("stdout", stdout)
        kw.setdefault("stderr", stderr)
        kw.setdefault("usage", usage)
        kw.setdefault("message", usage.message if usage else "")
        return ExecutionResult(verdict=verdict, backend=backend, output_truncated=truncated, **kw)

    # 1. infrastructure
    if error is not None:
        verdict = Verdict.SANDBOX_INIT_ERROR if isinstance(error, SandboxInitError) else Verdict.SANDBOX_ERROR
        return result(verdict, message=str(error))
    if usage is not None and usage.termination_cause == TerminationCause.SANDBOX_ERROR:
        return result(Verdict.SANDBOX_ERROR)

    # 2. compile
    if build is not None and not build.ok:
        return result(Verdict.COMPILE_ERROR, stdout="", stderr="", compile_output=build.compile_output)

    if run is None or usage is None:
        return result(Verdict.SANDBOX_ERROR, message="run finished without a usage report")

    if _fused_compile_failure(strategy, run, usage):
        return result(
            Verdict.COMPILE_ERROR,
            stdout="",
            stderr="",
            compile_output="\n".join(s for s in (run.stderr, run.stdout) if s),
        )

    # 3. / 4. ceilings
    if usage.termination_cause == TerminationCause.TIME_LIMIT_EXCEEDED:
        return result(Verdict.TIME_LIMIT_EXCEEDED)
    if _memory_exceeded(usage, submission.limits.memory_kib):
        return result(Verdict.MEMORY_LIMIT_EXCEEDED)

    # 5. runtime
    if usage.termination_cause == TerminationCause.SIGNALED or usage.exit_code:
        return result(Verdict.RUNTIME_ERROR)

    # 6. / 7. output
    if submission.expected_output is None:
        return result(Verdict.COMPLETED)
    if outputs_match(stdout, submission.expected_output):
        return result(Verdict.ACCEPTED)
    return result(Verdict.WRONG_ANSWER)
