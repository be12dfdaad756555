from __future__ import annotations
import re
import shlex
from dataclasses import dataclass
from typing import Optional, Tuple

from ..core.models import Language


@dataclass(frozen=True)
class LanguageStrategy:
    """
    How one language is built and run inside an execution unit.

    Commands are relative to the unit's working directory. Program names
    are bare (``gcc``, ``python3``); each backend decides how to resolve them.
    """
    language: Language
    source_file_name: str
    run_command: Tuple[str, ...]
    build_command: Optional[Tuple[str, ...]] = None
    image: str = ""                            # container image for this language
    diagnostic_pattern: Optional[str] = None   # compiler error lines, for fused build+run
    run_processes: int = 1

    @property
    def compiled(self) -> bool:
        return self.build_command is not None

    def shell_pipeline(self) -> str:
        """Single shell command that builds (if needed) and then execs the program."""
        run = "exec " + shlex.join(self.run_command)
        if not self.compiled:
            return run
        return f"{shlex.join(self.build_command)} && {run}"

    def looks_like_compile_failure(self, output: str) -> bool:
        if not self.diagnostic_pattern:
            return False
        return re.search(self.diagnostic_pattern, output, re.MULTILINE) is not None
