import asyncio
import os
import shutil
import sys
import time

import pytest

import config
import judge
from judge import LocalJudge, LocalRunner, RunResult, TestCaseData
from models import JudgeStatus
from main import get_judges
from fakes import ScriptedRunner, ok_run


def _run(runner, code, language="python", stdin=""):
    return asyncio.run(runner.run(code, language, stdin))


@pytest.fixture
def runner(tmp_path):
    return LocalRunner(run_timeout=5, temp_dir=tmp_path)


def test_python_echoes_stdin(runner):
    result = _run(runner, "print(input()[::-1])", stdin="hello\n")
    assert result.success
    assert result.status == JudgeStatus.ACCEPTED
    assert result.output == "olleh"
    assert result.runtime_ms >= 1


def test_python_reads_multiple_numbers(runner):
    code = "a, b = map(int, input().split())\nprint(a + b)\n"
    result = _run(runner, code, stdin="2 3")
    assert result.success
    assert result.output == "5"


def test_runtime_error_reports_stderr(runner):
    result = _run(runner, "print(1 // 0)")
    assert not result.success
    assert result.status == JudgeStatus.RUNTIME_ERROR
    assert "ZeroDivisionError" in result.error


def test_nonzero_exit_without_stderr(runner):
    result = _run(runner, "import sys\nsys.exit(3)")
    assert not result.success
    assert result.status == JudgeStatus.RUNTIME_ERROR
    assert "code 3" in result.error


def test_timeout_kills_process(tmp_path):
    runner = LocalRunner(run_timeout=1, temp_dir=tmp_path)
    started = time.monotonic()
    result = _run(runner, "import time\ntime.sleep(30)")
    assert time.monotonic() - started < 10
    assert result.status == JudgeStatus.TIME_LIMIT
    assert result.error == "Time Limit Exceeded"
    assert result.runtime_ms == 1000


def test_timeout_discards_output_already_written(tmp_path):
    runner = LocalRunner(run_timeout=1, temp_dir=tmp_path)
    result = _run(runner, "print('partial', flush=True)\nimport time\ntime.sleep(30)")
    assert result.status == JudgeStatus.TIME_LIMIT
    assert result.output == ""


def test_output_over_limit_is_cut_off(runner, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "MAX_OUTPUT_SIZE", 1024 * 1024)
    code = "import sys\nchunk = 'x' * 65536\nwhile True:\n    sys.stdout.write(chunk)\n"

    result = _run(runner, code)

    assert result.status == JudgeStatus.RUNTIME_ERROR
    assert result.error.startswith("Output too large:")
    assert result.output == ""
    assert result.runtime_ms < 5000
    assert list(tmp_path.iterdir()) == []


def test_stderr_counts_toward_output_limit(runner, monkeypatch):
    monkeypatch.setattr(config, "MAX_OUTPUT_SIZE", 1024 * 1024)
    code = "import sys\nchunk = 'e' * 65536\nwhile True:\n    sys.stderr.write(chunk)\n"

    result = _run(runner, code)

    assert result.error.startswith("Output too large:")
    assert result.runtime_ms < 5000


def test_work_directory_removed_after_run(runner, tmp_path):
    _run(runner, "print('done')")
    _run(runner, "raise ValueError('boom')")
    assert list(tmp_path.iterdir()) == []


def test_unsupported_language(runner):
    result = _run(runner, "puts 1", language="ruby")
    assert not result.success
    assert result.error == "Unsupported language: ruby"


def test_java_without_public_class(runner, tmp_path):
    result = _run(runner, "class Main { }", language="java")
    assert not result.success
    assert result.error == "No public class found in Java code"
    assert list(tmp_path.iterdir()) == []


def test_entry_class_ignores_commented_out_classes(tmp_path):
    languages = {
        "java": {
            "suffix": ".java",
            "entry_class": config.LANGUAGES["java"]["entry_class"],
            "run": [sys.executable, "-c", "print('{classname}')"],
        }
    }
    runner = LocalRunner(languages=languages, temp_dir=tmp_path)
    code = "// public class Old {}\n/* public class Older { } */\npublic class Main {\n}\n"

    result = _run(runner, code, language="java")

    assert result.success
    assert result.output == "Main"


@pytest.mark.skipif(shutil.which(config.GPP_PATH) is None, reason="g++ not installed")
def test_cpp_compile_error(runner):
    result = _run(runner, "int main() { return undefined_symbol; }", language="cpp")
    assert result.status == JudgeStatus.COMPILE_ERROR
    assert result.error.startswith("Compilation Error:")


@pytest.mark.skipif(shutil.which(config.GPP_PATH) is None, reason="g++ not installed")
def test_cpp_compiles_and_runs(runner):
    code = "#include <iostream>\nint main() { int a, b; std::cin >> a >> b; std::cout << a + b << std::endl; }"
    result = _run(runner, code, language="cpp", stdin="4 5")
    assert result.success
    assert result.output == "9"


def test_stale_entries_swept(runner, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "STALE_SWEEP_EVERY", 1)
    stale = tmp_path / "run_stale"
    stale.mkdir()
    old = time.time() - 2 * config.STALE_MAX_AGE
    os.utime(stale, (old, old))
    fresh = tmp_path / "run_fresh"
    fresh.mkdir()

    _run(runner, "print('x')")

    assert not stale.exists()
    assert fresh.exists()


def test_stale_sweep_counts_runs_across_requests(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "CODE_RUNNER_DIR", tmp_path)
    monkeypatch.setattr(config, "STALE_SWEEP_EVERY", 3)
    monkeypatch.setattr(judge, "_default_runner", None)
    stale = tmp_path / "run_stale"
    stale.mkdir()
    old = time.time() - 2 * config.STALE_MAX_AGE
    os.utime(stale, (old, old))

    # one single-case submission per request, each with freshly built judges
    for _ in range(5):
        local = get_judges()[-1]
        results = asyncio.run(local.judge("print('hello')", "python", [TestCaseData("", "hello")]))
        assert results[0].passed

    assert not stale.exists()


def test_local_judge_stops_at_first_failure():
    runner = ScriptedRunner(ok_run("5"), ok_run("31"), ok_run("0"))
    cases = [TestCaseData("2 3", "5"), TestCaseData("10 20", "30"), TestCaseData("-1 1", "0")]

    results = asyncio.run(LocalJudge(runner).judge("code", "python", cases))

    assert runner.stdins == ["2 3", "10 20"]
    assert [r.passed for r in results] == [True, False]
    assert results[1].status == JudgeStatus.WRONG_ANSWER
    assert results[1].expected_output == "30"
    assert results[1].actual_output == "31"


def test_local_judge_runs_all_when_not_stopping():
    runner = ScriptedRunner(ok_run("1"), ok_run("2"))
    cases = [TestCaseData("", "9"), TestCaseData("", "2")]

    results = asyncio.run(LocalJudge(runner, stop_on_failure=False).judge("code", "python", cases))

    assert [r.passed for r in results] == [False, True]


def test_local_judge_without_expected_output_passes_on_success():
    runner = ScriptedRunner(ok_run("anything"))
    results = asyncio.run(LocalJudge(runner).judge("code", "python", [TestCaseData("x", None)]))
    assert results[0].passed
    assert results[0].status == JudgeStatus.ACCEPTED


def test_local_judge_carries_failure_status():
    tle = RunResult(False, error="Time Limit Exceeded", runtime_ms=5000, status=JudgeStatus.TIME_LIMIT)
    results = asyncio.run(LocalJudge(ScriptedRunner(tle)).judge("code", "python", [TestCaseData("", "1")]))
    assert results[0].status == JudgeStatus.TIME_LIMIT
    assert results[0].stderr == "Time Limit Exceeded"
    assert results[0].time_used == 5000


def test_local_judge_converts_runner_crash():
    class ExplodingRunner:
        async def run(self, code, language, stdin=""):
            raise OSError("disk full")

    results = asyncio.run(LocalJudge(ExplodingRunner()).judge("code", "python", [TestCaseData("", "1")]))
    assert results[0].token == "local-error-0"
    assert results[0].status == JudgeStatus.RUNTIME_ERROR
    assert results[0].stderr == "disk full"


def test_local_judge_end_to_end_with_real_runner(runner):
    code = "a, b = map(int, input().split())\nprint(a + b)\n"
    cases = [TestCaseData("2 3", "5"), TestCaseData("10 20", "30")]
    results = asyncio.run(LocalJudge(runner).judge(code, "python", cases))
    assert all(r.passed for r in results)
    assert [r.token for r in results] == ["local-run-0", "local-run-1"]
