from __future__ import annotations
from typing import Dict, List

from ..core.errors import UnsupportedLanguage
from ..core.models import Language
from .base import LanguageStrategy

_GCC_DIAG = r"^main\.(c|cpp):\d+:(\d+:)? (fatal )?error:|undefined reference to|ld returned \d+ exit status"

STRATEGIES: Dict[Language, LanguageStrategy] = {
    Language.C: LanguageStrategy(
        language=Language.C,
        source_file_name="main.c",
        build_command=("gcc", "-O2", "-std=c11", "-o", "main", "main.c", "-lm"),
        run_command=("./main",),
        image="gcc:13",
        diagnostic_pattern=_GCC_DIAG,
    ),
    Language.CPP: LanguageStrategy(
        language=Language.CPP,
        source_file_name="main.cpp",
        build_command=("g++", "-O2", "-std=c++17", "-o", "main", "main.cpp"),
        run_command=("./main",),
        image="gcc:13",
        diagnostic_pattern=_GCC_DIAG,
    ),
    Language.JAVA: LanguageStrategy(
        language=Language.JAVA,
        source_file_name="Main.java",
        build_command=("javac", "Main.java"),
        run_command=("java", "-Xss64m", "Main"),  # public class must be Main
        image="eclipse-temurin:21-jdk",
        diagnostic_pattern=r"^Main\.java:\d+: error:",
        run_processes=64,
    ),
    Language.PYTHON: LanguageStrategy(
        language=Language.PYTHON,
        source_file_name="main.py",
        run_command=("python3", "main.py"),
        image="python:3.12-slim",
    ),
    Language.JAVASCRIPT: LanguageStrategy(
        language=Language.JAVASCRIPT,
        source_file_name="main.js",
        run_command=("node", "main.js"),
        image="node:20-slim",
        run_processes=16,
    ),
    Language.BASH: LanguageStrategy(
        language=Language.BASH,
        source_file_name="main.sh",
        run_command=("bash", "main.sh"),
        image="bash:5.2",
        run_processes=16,
    ),
}


def resolve(language) -> LanguageStrategy:
    """Map a language identifier to its strategy; unknown identifiers never fall back to a default."""
    if isinstance(language, Language):
        return STRATEGIES[language]
    try:
        return STRATEGIES[Language(str(language).strip().lower())]
    except (ValueError, KeyError):
        raise UnsupportedLanguage(str(language)) from None


def supported() -> List[str]:
    return [lang.value for lang in STRATEGIES]
