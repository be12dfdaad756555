"""
End-to-end runs against a real backend. Skipped unless the tool is on PATH
(isolate additionally needs root or a configured setuid install).
"""
import os
import shutil
import subprocess

import pytest

from codejudge.core.models import BackendKind, ResourceLimits, Submission, Verdict
from codejudge.runners.languages import resolve
from codejudge.services.orchestrator import Orchestrator
from codejudge.settings import IsolateConfig, Settings

LIMITS = ResourceLimits(cpu_time_seconds=1, wall_time_seconds=3, memory_kib=64 * 1024)
# interpreters like node reserve a lot of address space up front
GENEROUS = ResourceLimits(cpu_time_seconds=2, wall_time_seconds=5, memory_kib=2 * 1024 * 1024)


def _docker_up() -> bool:
    if not shutil.which("docker"):
        return False
    try:
        return subprocess.run(["docker", "info"], capture_output=True, timeout=10).returncode == 0
    except (OSError, subprocess.TimeoutExpired):
        return False


BACKENDS = [
    pytest.param(BackendKind.ISOLATE, marks=pytest.mark.skipif(not shutil.which("isolate"), reason="isolate not installed")),
    pytest.param(BackendKind.CONTAINER, marks=pytest.mark.skipif(not _docker_up(), reason="docker not available")),
]


@pytest.fixture(params=BACKENDS)
def orchestrator(request, tmp_path):
    s = Settings(backend=request.param, staging_dir=tmp_path / "staging", unit_id_base=900, unit_count=2)
    return Orchestrator(s)


def judge(orc, code, *, language="python", stdin="", expected=None, limits=LIMITS):
    return orc.judge(Submission(language=language, source_code=code, stdin=stdin, expected_output=expected, limits=limits))


def test_echo_is_accepted(orchestrator):
    res = judge(orchestrator, "print(input())", stdin="ok\n", expected="ok")
    assert res.verdict == Verdict.ACCEPTED, res
    assert res.usage.wall_time_used > 0


def test_wrong_answer(orchestrator):
    assert judge(orchestrator, "print('nope')", expected="ok").verdict == Verdict.WRONG_ANSWER


def test_busy_loop_hits_time_limit(orchestrator):
    res = judge(orchestrator, "while True:\n    pass\n")
    assert res.verdict == Verdict.TIME_LIMIT_EXCEEDED, res


def test_nonzero_exit_is_runtime_error(orchestrator):
    assert judge(orchestrator, "raise SystemExit(3)").verdict == Verdict.RUNTIME_ERROR


def test_compile_error(orchestrator):
    res = judge(orchestrator, "int main( { return 0; }", language="c")
    assert res.verdict == Verdict.COMPILE_ERROR, res
    assert "error" in res.compile_output


@pytest.mark.parametrize(
    "language, code",
    [
        ("python", "print('ok')"),
        ("javascript", "console.log('ok')"),
        ("bash", "echo ok"),
    ],
)
def test_ok_round_trip(orchestrator, language, code):
    strategy = resolve(language)
    if orchestrator.s.backend == BackendKind.ISOLATE and not shutil.which(strategy.run_command[0]):
        pytest.skip(f"{strategy.run_command[0]} not installed on the host")
    res = judge(orchestrator, code, language=language, expected="ok", limits=GENEROUS)
    assert res.verdict == Verdict.ACCEPTED, res
    assert res.stdout.strip() == "ok"


MEMORY_HOG = "x = b'x' * (256 * 1024 * 1024)\nprint(len(x))\n"


def _isolate_settings(tmp_path, use_cgroups: bool) -> Settings:
    return Settings(
        backend=BackendKind.ISOLATE,
        staging_dir=tmp_path / "staging",
        unit_id_base=900,
        unit_count=2,
        isolate=IsolateConfig(use_cgroups=use_cgroups),
    )


@pytest.mark.skipif(not shutil.which("isolate"), reason="isolate not installed")
def test_memory_hog_without_cgroups_is_not_memory_observed(tmp_path):
    res = judge(Orchestrator(_isolate_settings(tmp_path, False)), MEMORY_HOG)
    assert res.verdict == Verdict.RUNTIME_ERROR, res
    assert not res.usage.memory_observed


@pytest.mark.skipif(
    not shutil.which("isolate") or os.environ.get("CODEJUDGE_ISOLATE_CG") != "1",
    reason="needs isolate with cgroup support (set CODEJUDGE_ISOLATE_CG=1)",
)
def test_memory_hog_with_cgroups_is_memory_limit(tmp_path):
    res = judge(Orchestrator(_isolate_settings(tmp_path, True)), MEMORY_HOG)
    assert res.verdict == Verdict.MEMORY_LIMIT_EXCEEDED, res
    assert res.usage.memory_observed
