"""
Parse the isolate ``--meta`` record into a UsageReport.

The record is line oriented ``key:value`` text, e.g.::

    time:0.012
    time-wall:0.035
    max-rss:3456
    status:TO
    message:Time limit exceeded

Nothing outside this module knows about the on-disk format.
"""
from __future__ import annotations
from typing import Dict, Optional

from ..core.errors import MetadataError
from ..core.models import TerminationCause, UsageReport

# isolate status codes
STATUS_RUNTIME_ERROR = "RE"
STATUS_SIGNALED = "SG"
STATUS_TIMEOUT = "TO"
STATUS_INTERNAL = "XX"

REQUIRED_KEYS = ("time", "time-wall", "max-rss")

MEMORY_ADVISORY = "memory limit is an address-space cap without cgroups; overruns report as runtime errors"


def parse_meta(text: str) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for line in text.splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        fields[key.strip()] = value.strip()
    return fields


def _number(fields: Dict[str, str], key: str, cast):
    try:
        return cast(fields[key])
    except (KeyError, ValueError) as e:
        raise MetadataError(f"bad or missing '{key}' in isolate meta: {fields.get(key)!r}") from e


def _optional_int(fields: Dict[str, str], key: str) -> Optional[int]:
    return _number(fields, key, int) if key in fields else None


def usage_from_meta(text: str, memory_limit_kib: int, memory_observed: bool = True) -> UsageReport:
    """
    memory_observed=False when the box only caps address space (no cgroups):
    an allocation over the cap fails inside the program and shows up as an
    ordinary runtime error while max-rss stays below the limit.
    """
    fields = parse_meta(text)
    if not fields:
        raise MetadataError("isolate meta record is empty")

    status = fields.get("status", "")
    message = fields.get("message", "")
    if status == STATUS_INTERNAL:
        return UsageReport(
            wall_time_used=_number(fields, "time-wall", float) if "time-wall" in fields else 0.0,
            termination_cause=TerminationCause.SANDBOX_ERROR,
            message=message or "isolate internal error",
        )

    missing = [k for k in REQUIRED_KEYS if k not in fields]
    if missing:
        raise MetadataError(f"isolate meta record lacks {', '.join(missing)}")

    cpu = _number(fields, "time", float)
    wall = _number(fields, "time-wall", float)
    rss = _number(fields, "max-rss", int)
    cg_mem = _optional_int(fields, "cg-mem")
    peak = max(rss, cg_mem) if cg_mem is not None else rss
    exit_code = _optional_int(fields, "exitcode")
    exit_signal = _optional_int(fields, "exitsig")
    oom = fields.get("cg-oom-killed") == "1"
    if fields.get("killed") == "1" and not message:
        message = "killed by isolate"

    if status == STATUS_TIMEOUT:
        cause = TerminationCause.TIME_LIMIT_EXCEEDED
    elif status in (STATUS_SIGNALED, STATUS_RUNTIME_ERROR) and (oom or peak >= memory_limit_kib):
        cause = TerminationCause.MEMORY_LIMIT_EXCEEDED
    elif status == STATUS_SIGNALED:
        cause = TerminationCause.SIGNALED
    elif status in ("", STATUS_RUNTIME_ERROR):
        cause = TerminationCause.EXITED
        exit_code = exit_code if exit_code is not None else 0
    else:
        raise MetadataError(f"unknown isolate status {status!r}")

    return UsageReport(
        wall_time_used=wall,
        termination_cause=cause,
        cpu_time_used=cpu,
        max_memory_kib=peak,
        exit_code=exit_code,
        exit_signal=exit_signal,
        message=message if memory_observed else "; ".join(m for m in (message, MEMORY_ADVISORY) if m),
        memory_observed=memory_observed,
    )
