from __future__ import annotations


class JudgeError(Exception):
    """base class for errors raised while judging a submission"""


class InvalidLimits(JudgeError, ValueError):
    """cpu/wall/memory ceilings are non-positive, or wall < cpu"""


class UnsupportedLanguage(JudgeError, ValueError):
    def __init__(self, language: str):
        super().__init__(f"unsupported language: {language!r}")
        self.language = language


class SandboxInitError(JudgeError, RuntimeError):
    """the execution unit could not be prepared"""


class SandboxError(JudgeError, RuntimeError):
    """backend infrastructure fault after the unit was allocated"""


class MetadataError(SandboxError):
    """accounting record is missing or malformed"""
