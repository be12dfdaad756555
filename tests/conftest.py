from __future__ import annotations
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from codejudge.core.models import (
    BackendKind,
    ResourceLimits,
    Submission,
    TerminationCause,
    UsageReport,
)
from codejudge.core.utils import BoxIdPool
from codejudge.executor.base import BuildOutcome, Executor, RunOutcome
from codejudge.executor.commands import CommandResult
from codejudge.services.orchestrator import Orchestrator
from codejudge.services.storage import LocalFSStorage
from codejudge.settings import Settings

GENEROUS = ResourceLimits(cpu_time_seconds=2, wall_time_seconds=5, memory_kib=256 * 1024)


def make_submission(code="print('ok')", language="python", stdin="", expected="ok", limits=GENEROUS):
    return Submission(language=language, source_code=code, stdin=stdin, expected_output=expected, limits=limits)


class FakeRunner:
    """Records argv and answers from a list of (predicate, result) rules."""

    def __init__(self):
        self.calls: List[List[str]] = []
        self.inputs: List[bytes] = []
        self.rules: List[tuple] = []
        self.kill_hooks: List[Callable] = []

    def on(self, match: Callable[[List[str]], bool], result, side_effect: Optional[Callable] = None):
        self.rules.append((match, result, side_effect))
        return self

    def run(self, argv, *, input=b"", timeout=None, grace_s=1.0, cwd=None, env=None, on_kill=None):
        self.calls.append(list(argv))
        self.inputs.append(input)
        if on_kill:
            self.kill_hooks.append(on_kill)
        for match, result, side_effect in self.rules:
            if match(argv):
                if side_effect:
                    side_effect(argv)
                return result
        return CommandResult(returncode=0)

    def find(self, flag: str) -> List[List[str]]:
        return [c for c in self.calls if flag in c]


class SpyExecutor(Executor):
    """Scriptable executor that counts lifecycle calls."""
    kind = BackendKind.ISOLATE

    def __init__(self, box_id, strategy, script: Dict):
        super().__init__(box_id, strategy)
        self.script = script
        self.calls: List[str] = []

    def _step(self, name):
        self.calls.append(name)
        hook = self.script.get(f"{name}_hook")
        if hook:
            hook(self)
        exc = self.script.get(f"{name}_raises")
        if exc is not None:
            raise exc

    def allocate(self):
        self._step("allocate")

    def build(self, source_file: Path) -> BuildOutcome:
        self._step("build")
        self.source_text = Path(source_file).read_text(encoding="utf-8")
        return self.script.get("build", BuildOutcome(ok=True))

    def run(self, stdin, limits) -> RunOutcome:
        self._step("run")
        self.stdin = stdin
        self.limits = limits
        return self.script.get("run", RunOutcome(backend=self.kind, stdout="ok\n", stderr="", exit_code=0))

    def collect_usage(self) -> UsageReport:
        self._step("collect_usage")
        return self.script.get(
            "usage",
            UsageReport(
                wall_time_used=0.05,
                termination_cause=TerminationCause.EXITED,
                cpu_time_used=0.01,
                max_memory_kib=4000,
                exit_code=0,
            ),
        )

    def release(self):
        self._step("release")


class SpyFactory:
    def __init__(self, **script):
        self.script = script
        self.units: List[SpyExecutor] = []
        self._lock = threading.Lock()

    def __call__(self, box_id, strategy):
        unit = SpyExecutor(box_id, strategy, self.script)
        with self._lock:
            self.units.append(unit)
        return unit

    def count(self, name: str) -> int:
        return sum(u.calls.count(name) for u in self.units)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(staging_dir=tmp_path / "staging", acquire_timeout_seconds=1.0)


@pytest.fixture
def make_orchestrator(settings):
    def _make(factory, pool: Optional[BoxIdPool] = None) -> Orchestrator:
        return Orchestrator(
            settings,
            executor_factory=factory,
            storage=LocalFSStorage(settings.staging_dir),
            pool=pool or BoxIdPool(0, 4),
        )
    return _make

