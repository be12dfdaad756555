# src/codejudge/executor/commands.py
from __future__ import annotations
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, IO, List, Optional

import structlog

log = structlog.get_logger(__name__)

DEFAULT_MAX_OUTPUT = 64 * 1024


@dataclass(frozen=True)
class CommandResult:
    returncode: Optional[int]
    stdout: bytes = b""
    stderr: bytes = b""
    elapsed_s: float = 0.0
    timed_out: bool = False   # deadline passed, SIGTERM sent
    killed: bool = False      # grace period passed too, SIGKILL sent
    truncated: bool = False

    @property
    def out(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def err(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


class _BoundedReader(threading.Thread):
    """Drains a pipe to EOF, keeping at most `cap` bytes."""

    def __init__(self, stream: IO[bytes], cap: int):
        super().__init__(daemon=True)
        self.stream = stream
        self.cap = cap
        self.buf = bytearray()
        self.truncated = False

    def run(self):
        try:
            while True:
                chunk = self.stream.read1(8192) if hasattr(self.stream, "read1") else self.stream.read(8192)
                if not chunk:
                    break
                room = self.cap - len(self.buf)
                if room > 0:
                    self.buf += chunk[:room]
                if len(chunk) > room:
                    self.truncated = True
        except (OSError, ValueError):
            pass
        finally:
            self.stream.close()


def _feed(stream: IO[bytes], data: bytes):
    try:
        if data:
            stream.write(data)
    except (BrokenPipeError, OSError):
        # child closed stdin early; not an error for the run
        pass
    finally:
        try:
            stream.close()
        except OSError:
            pass


class CommandRunner:
    """
    Runs an external command in its own session with a deadline.

    On deadline: SIGTERM to the process group, then SIGKILL after `grace_s`
    and `on_kill()` so the caller can tear down anything the child left behind.
    """

    def __init__(self, max_output_bytes: int = DEFAULT_MAX_OUTPUT):
        self.max_output_bytes = max_output_bytes

    @staticmethod
    def _signal(proc: subprocess.Popen, sig: int):
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass

    def run(
        self,
        argv: List[str],
        *,
        input: bytes = b"",
        timeout: Optional[float] = None,
        grace_s: float = 1.0,
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        on_kill: Optional[Callable[[], None]] = None,
    ) -> CommandResult:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
            env=env,
            start_new_session=True,
        )
        out = _BoundedReader(proc.stdout, self.max_output_bytes)
        err = _BoundedReader(proc.stderr, self.max_output_bytes)
        out.start()
        err.start()
        threading.Thread(target=_feed, args=(proc.stdin, input), daemon=True).start()

        # clock starts once we are waiting on the child, not at spawn
        start = time.monotonic()
        timed_out = killed = False
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            self._signal(proc, signal.SIGTERM)
            try:
                proc.wait(timeout=grace_s)
            except subprocess.TimeoutExpired:
                killed = True
                log.warning("command.killed", argv0=argv[0], pid=proc.pid)
                self._signal(proc, signal.SIGKILL)
                try:
                    if on_kill:
                        on_kill()
                finally:
                    proc.wait()
        elapsed = time.monotonic() - start

        # grandchildren may still hold the pipes open
        out.join(grace_s)
        err.join(grace_s)
        return CommandResult(
            returncode=proc.returncode,
            stdout=bytes(out.buf),
            stderr=bytes(err.buf),
            elapsed_s=elapsed,
            timed_out=timed_out,
            killed=killed,
            truncated=out.truncated or err.truncated,
        )
