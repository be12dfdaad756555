from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..core.models import BackendKind, ResourceLimits, UsageReport
from ..runners.base import LanguageStrategy


@dataclass(frozen=True)
class BuildOutcome:
    ok: bool
    compile_output: str = ""
    # container units cannot build separately; the compile step runs inside run()
    fused: bool = False


@dataclass(frozen=True)
class RunOutcome:
    backend: BackendKind
    stdout: str
    stderr: str
    exit_code: Optional[int] = None
    truncated: bool = False
    fused_build: bool = False


class Executor(ABC):
    """
    One isolated execution unit, owned by a single submission.

    Lifecycle: allocate -> build -> run -> collect_usage -> release.
    release() must be safe to call any number of times.
    """
    kind: BackendKind
    observes_memory: bool = True

    def __init__(self, box_id: int, strategy: LanguageStrategy):
        self.box_id = box_id
        self.strategy = strategy

    @abstractmethod
    def allocate(self) -> None: ...

    @abstractmethod
    def build(self, source_file: Path) -> BuildOutcome: ...

    @abstractmethod
    def run(self, stdin: str, limits: ResourceLimits) -> RunOutcome: ...

    @abstractmethod
    def collect_usage(self) -> UsageReport: ...

    @abstractmethod
    def release(self) -> None: ...
