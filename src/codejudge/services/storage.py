from __future__ import annotations
import shutil
from pathlib import Path


class LocalFSStorage:
    """
    Write-once staging of submitted source files:
      <staging_dir>/<submission_id>/
        └─ <source file name>   (main.c, Main.java, main.py, ...)
    Nothing here outlives the judge call that created it.
    """

    def __init__(self, staging_dir: Path):
        # always an absolute path
        self.staging_dir = staging_dir if staging_dir.is_absolute() else staging_dir.resolve()

    def workspace(self, submission_id: str) -> Path:
        return self.staging_dir / submission_id

    def stage(self, submission_id: str, file_name: str, code: str) -> Path:
        """Create the source file; fails with FileExistsError if the path was already written."""
        ws = self.workspace(submission_id)
        ws.mkdir(parents=True, exist_ok=True)
        path = ws / file_name
        with open(path, "x", encoding="utf-8") as f:
            f.write(code)
        return path

    def discard(self, submission_id: str) -> None:
        shutil.rmtree(self.workspace(submission_id), ignore_errors=True)
