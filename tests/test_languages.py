import pytest

from codejudge.core.errors import UnsupportedLanguage
from codejudge.core.models import Language
from codejudge.runners.languages import STRATEGIES, resolve, supported


def test_table_is_total_over_language_enum():
    assert set(STRATEGIES) == set(Language)
    assert sorted(supported()) == sorted(l.value for l in Language)


@pytest.mark.parametrize("lang", ["c", "cpp", "java"])
def test_compiled_languages_have_build_step(lang):
    s = resolve(lang)
    assert s.compiled
    assert s.build_command
    assert s.diagnostic_pattern


@pytest.mark.parametrize("lang, interpreter", [("python", "python3"), ("javascript", "node"), ("bash", "bash")])
def test_interpreted_languages_run_the_source_directly(lang, interpreter):
    s = resolve(lang)
    assert not s.compiled
    assert s.run_command == (interpreter, s.source_file_name)


def test_resolve_accepts_enum_and_is_case_insensitive():
    assert resolve(Language.CPP) is resolve("CPP") is resolve(" cpp ")


@pytest.mark.parametrize("lang", ["", "cobol", "py", "txt", None])
def test_unknown_language_never_falls_back(lang):
    with pytest.raises(UnsupportedLanguage):
        resolve(lang)


def test_java_source_file_is_main_class():
    assert resolve("java").source_file_name == "Main.java"


def test_shell_pipeline_compiles_then_execs():
    assert resolve("c").shell_pipeline() == "gcc -O2 -std=c11 -o main main.c -lm && exec ./main"
    assert resolve("python").shell_pipeline() == "exec python3 main.py"


def test_compile_failure_heuristics():
    c = resolve("c")
    assert c.looks_like_compile_failure("main.c:3:5: error: expected ';' before '}' token")
    assert c.looks_like_compile_failure("/usr/bin/ld: main.o: undefined reference to `foo'")
    assert not c.looks_like_compile_failure("Segmentation fault")
    java = resolve("java")
    assert java.looks_like_compile_failure("Main.java:4: error: cannot find symbol")
    assert not resolve("python").looks_like_compile_failure("main.c:3:5: error: x")
