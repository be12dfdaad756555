from __future__ import annotations
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from typing import List, Optional

from .core.errors import InvalidLimits, UnsupportedLanguage
from .core.models import ExecutionResult, Submission
from .logging import setup_logging
from .runners.languages import supported
from .services.orchestrator import Orchestrator
from .settings import load_settings

setup_logging()
settings = load_settings()

app = FastAPI(title="codejudge")

orchestrator = Orchestrator(settings)


# --------- Schemas ---------
class SubmitReq(BaseModel):
    language: str
    code: str
    input: str = ""
    expected_output: Optional[str] = None
    cpu_time_limit: Optional[float] = None   # seconds
    wall_time_limit: Optional[float] = None  # seconds
    memory_limit: Optional[int] = None       # KiB


class UsageRes(BaseModel):
    cpu_time: Optional[float] = None
    wall_time: float
    memory: Optional[int] = None             # KiB
    termination_cause: str
    exit_code: Optional[int] = None
    exit_signal: Optional[int] = None
    memory_observed: bool


class SubmitRes(BaseModel):
    verdict: str
    stdout: str
    stderr: str
    compile_output: str
    message: str
    backend: Optional[str] = None
    output_truncated: bool = False
    usage: Optional[UsageRes] = None


def _ms(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 3)


def to_response(res: ExecutionResult) -> SubmitRes:
    usage = None
    if res.usage is not None:
        u = res.usage
        usage = UsageRes(
            cpu_time=_ms(u.cpu_time_used),
            wall_time=_ms(u.wall_time_used),
            memory=u.max_memory_kib,
            termination_cause=u.termination_cause.value,
            exit_code=u.exit_code,
            exit_signal=u.exit_signal,
            memory_observed=u.memory_observed,
        )
    return SubmitRes(
        verdict=res.verdict.value,
        stdout=res.stdout,
        stderr=res.stderr,
        compile_output=res.compile_output,
        message=res.message,
        backend=res.backend.value if res.backend else None,
        output_truncated=res.output_truncated,
        usage=usage,
    )


# --------- Endpoints ---------

@app.get("/health")
def health():
    return {"ok": True, "backend": settings.backend.value}


@app.get("/languages", response_model=List[str])
def languages():
    return supported()


# sync def: FastAPI runs it in the threadpool, so a client disconnect never abandons a unit mid-run
@app.post("/submit", response_model=SubmitRes)
def submit(req: SubmitReq):
    given = {
        "cpu_time_seconds": req.cpu_time_limit,
        "wall_time_seconds": req.wall_time_limit,
        "memory_kib": req.memory_limit,
    }
    # omitted fields fall back to the configured defaults
    limits = settings.default_limits.model_copy(
        update={k: v for k, v in given.items() if v is not None}
    ).to_limits()
    submission = Submission(
        language=req.language,
        source_code=req.code,
        stdin=req.input,
        expected_output=req.expected_output,
        limits=limits,
    )
    try:
        res = orchestrator.judge(submission)
    except (InvalidLimits, UnsupportedLanguage) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return to_response(res)
