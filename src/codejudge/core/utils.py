from __future__ import annotations
import itertools
import threading
import time
import uuid
from collections import deque
from typing import Deque, Optional, Set

from .errors import SandboxInitError

_seq = itertools.count(1)


def new_submission_id() -> str:
    # counter keeps ids unique inside one process, uuid suffix across restarts
    return f"{int(time.time())}-{next(_seq):06d}-{uuid.uuid4().hex[:6]}"


class BoxIdPool:
    """
    Hands out execution-unit ids from [base, base + size).

    An id is only handed out again after release(); callers must release
    after the unit's teardown has finished, so a slow cleanup never races
    a fresh allocation of the same box/container.
    """

    def __init__(self, base: int = 0, size: int = 16):
        if size <= 0:
            raise ValueError("pool size must be positive")
        self.base = base
        self.size = size
        self._free: Deque[int] = deque(range(base, base + size))
        self._in_use: Set[int] = set()
        self._cond = threading.Condition()

    def acquire(self, timeout: Optional[float] = None) -> int:
        with self._cond:
            if not self._cond.wait_for(lambda: bool(self._free), timeout=timeout):
                raise SandboxInitError(f"no free execution unit within {timeout}s")
            box_id = self._free.popleft()
            self._in_use.add(box_id)
            return box_id

    def release(self, box_id: int) -> None:
        with self._cond:
            if box_id not in self._in_use:
                raise ValueError(f"box {box_id} is not in use")
            self._in_use.remove(box_id)
            # FIFO: freshly released ids go to the back of the queue
            self._free.append(box_id)
            self._cond.notify()

    def in_use(self) -> Set[int]:
        with self._cond:
            return set(self._in_use)
