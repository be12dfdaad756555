from __future__ import annotations
import math
from dataclasses import dataclass
from enum import Enum
from numbers import Real
from typing import Optional

from .errors import InvalidLimits


class Language(str, Enum):
    C = "c"
    CPP = "cpp"
    JAVA = "java"
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    BASH = "bash"


class BackendKind(str, Enum):
    ISOLATE = "isolate"      # process sandbox
    CONTAINER = "container"  # single-use container


class TerminationCause(str, Enum):
    EXITED = "Exited"
    SIGNALED = "Signaled"
    TIME_LIMIT_EXCEEDED = "TimeLimitExceeded"
    MEMORY_LIMIT_EXCEEDED = "MemoryLimitExceeded"
    SANDBOX_ERROR = "SandboxError"


class Verdict(str, Enum):
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "WrongAnswer"
    COMPLETED = "Completed"
    COMPILE_ERROR = "CompileError"
    TIME_LIMIT_EXCEEDED = "TimeLimitExceeded"
    MEMORY_LIMIT_EXCEEDED = "MemoryLimitExceeded"
    RUNTIME_ERROR = "RuntimeError"
    SANDBOX_INIT_ERROR = "SandboxInitError"
    SANDBOX_ERROR = "SandboxError"


def _positive(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value) and value > 0


@dataclass(frozen=True)
class ResourceLimits:
    cpu_time_seconds: float
    wall_time_seconds: float
    memory_kib: int

    def validate(self) -> "ResourceLimits":
        """
        Raise InvalidLimits unless every ceiling is positive and wall >= cpu.
        A process may block without burning cpu, so wall can never be the tighter bound.
        """
        if not _positive(self.cpu_time_seconds):
            raise InvalidLimits(f"cpu_time_seconds must be positive, got {self.cpu_time_seconds!r}")
        if not _positive(self.wall_time_seconds):
            raise InvalidLimits(f"wall_time_seconds must be positive, got {self.wall_time_seconds!r}")
        if not isinstance(self.memory_kib, int) or isinstance(self.memory_kib, bool) or self.memory_kib <= 0:
            raise InvalidLimits(f"memory_kib must be a positive integer, got {self.memory_kib!r}")
        if self.wall_time_seconds < self.cpu_time_seconds:
            raise InvalidLimits(
                f"wall_time_seconds ({self.wall_time_seconds}) < cpu_time_seconds ({self.cpu_time_seconds})"
            )
        return self


@dataclass(frozen=True)
class Submission:
    language: str                # resolved against Language by the strategy table
    source_code: str
    stdin: str
    limits: ResourceLimits
    expected_output: Optional[str] = None


@dataclass(frozen=True)
class UsageReport:
    wall_time_used: float
    termination_cause: TerminationCause
    cpu_time_used: Optional[float] = None   # None: backend cannot observe cpu time
    max_memory_kib: Optional[int] = None    # None: backend cannot observe memory
    exit_code: Optional[int] = None
    exit_signal: Optional[int] = None
    message: str = ""
    memory_observed: bool = True


@dataclass(frozen=True)
class ExecutionResult:
    verdict: Verdict
    stdout: str = ""
    stderr: str = ""
    compile_output: str = ""
    usage: Optional[UsageReport] = None
    message: str = ""
    backend: Optional[BackendKind] = None
    output_truncated: bool = False
