import asyncio
import contextlib
import logging
import re
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import psutil

import config
from comparator import compare, strip_comments
from models import JudgeStatus

logger = logging.getLogger(__name__)

# Interval between memory and output-size samples of a running submission
SAMPLE_INTERVAL = 0.01


@dataclass
class TestCaseData:
    __test__ = False

    input: str = ""
    expected_output: Optional[str] = None


@dataclass
class RunResult:
    success: bool
    output: str = ""
    error: str = ""
    runtime_ms: int = 0
    memory_kb: int = 0
    status: JudgeStatus = JudgeStatus.RUNTIME_ERROR


@dataclass
class JudgeResult:
    """Outcome of one test case, from either judge path."""
    token: str
    status: JudgeStatus
    stdout: str = ""
    stderr: str = ""
    compile_output: str = ""
    time_used: int = 0  # ms
    memory_used: int = 0  # KB
    passed: bool = False
    expected_output: Optional[str] = None
    actual_output: Optional[str] = None


def _kill_tree(pid: int):
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass


class _ProcessWatch:
    """Samples peak resident memory of a process tree and enforces the output cap.

    The tree is killed as soon as the captured output files grow past
    MAX_OUTPUT_SIZE.
    """

    def __init__(self, pid: int, output_files: tuple):
        self.pid = pid
        self.output_files = output_files
        self.peak_kb = 0
        self.output_exceeded = False

    def output_size(self) -> int:
        size = 0
        for path in self.output_files:
            try:
                size += path.stat().st_size
            except OSError:
                continue
        return size

    async def run(self):
        try:
            proc = psutil.Process(self.pid)
            while True:
                if self.output_size() > config.MAX_OUTPUT_SIZE:
                    self.output_exceeded = True
                    _kill_tree(self.pid)
                    return
                rss = proc.memory_info().rss
                for child in proc.children(recursive=True):
                    rss += child.memory_info().rss
                self.peak_kb = max(self.peak_kb, rss // 1024)
                await asyncio.sleep(SAMPLE_INTERVAL)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return


def _read_capped(path: Path) -> str:
    with open(path, "rb") as f:
        return f.read(config.MAX_OUTPUT_SIZE).decode("utf-8", errors="replace")


class LocalRunner:
    """Compiles and runs one program per call as a plain OS process.

    This is not a sandbox: submitted code runs with the service's own
    privileges and only a wall-clock limit. Deploy it inside a restricted
    container if untrusted users can reach it.
    """

    def __init__(self, languages: Optional[dict] = None, run_timeout: Optional[float] = None,
                 compile_timeout: Optional[float] = None, temp_dir: Optional[Path] = None):
        self.languages = languages or config.LANGUAGES
        self.run_timeout = run_timeout or config.RUN_TIMEOUT
        self.compile_timeout = compile_timeout or config.COMPILE_TIMEOUT
        self.temp_dir = Path(temp_dir or config.CODE_RUNNER_DIR)
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self._runs = 0

    async def run(self, code: str, language: str, stdin: Optional[str] = "") -> RunResult:
        lang = self.languages.get(language)
        if lang is None:
            return RunResult(False, error=f"Unsupported language: {language}")

        self._sweep_if_needed()
        work_dir: Optional[Path] = None
        try:
            stem = f"code_{time.time_ns()}"
            classname = ""
            if "entry_class" in lang:
                match = re.search(lang["entry_class"], strip_comments(code, language))
                if not match:
                    return RunResult(False, error=f"No public class found in {language.capitalize()} code")
                classname = stem = match.group(1)

            work_dir = Path(tempfile.mkdtemp(prefix=f"run_{time.time_ns()}_", dir=self.temp_dir))
            source_file = work_dir / f"{stem}{lang['suffix']}"
            source_file.write_text(code, encoding="utf-8")
            fields = {
                "source": str(source_file),
                "binary": str(work_dir / f"{stem}.exe"),
                "workdir": str(work_dir),
                "classname": classname,
            }

            if "compile" in lang:
                compile_result = await self._compile(self._command(lang["compile"], fields), work_dir)
                if compile_result.status != JudgeStatus.ACCEPTED:
                    return compile_result

            return await self._execute(self._command(lang["run"], fields), stdin or "", work_dir)
        except Exception as e:
            logger.exception(f"[Runner] Failed to run {language} code")
            return RunResult(False, error=str(e))
        finally:
            if work_dir is not None:
                shutil.rmtree(work_dir, ignore_errors=True)

    @staticmethod
    def _command(template: list, fields: dict) -> list:
        return [part.format(**fields) for part in template]

    async def _compile(self, cmd: list, work_dir: Path) -> RunResult:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(work_dir),
            start_new_session=True,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.compile_timeout)
        except asyncio.TimeoutError:
            _kill_tree(process.pid)
            await process.wait()
            return RunResult(False, error="Compilation Error: compilation timed out",
                             status=JudgeStatus.COMPILE_ERROR)

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace")[:2000]
            return RunResult(False, error=f"Compilation Error: {message}", status=JudgeStatus.COMPILE_ERROR)
        return RunResult(True, status=JudgeStatus.ACCEPTED)

    async def _execute(self, cmd: list, stdin: str, work_dir: Path) -> RunResult:
        # Program output goes to files so the cap holds without buffering it here
        user_output = work_dir / "user.out"
        user_error = work_dir / "user.err"
        with open(user_output, "wb") as fout, open(user_error, "wb") as ferr:
            start_time = time.perf_counter()
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=fout,
                stderr=ferr,
                cwd=str(work_dir),
                start_new_session=True,
            )
            watch = _ProcessWatch(process.pid, (user_output, user_error))
            watcher = asyncio.create_task(watch.run())
            try:
                await asyncio.wait_for(process.communicate(stdin.encode("utf-8")), timeout=self.run_timeout)
            except asyncio.TimeoutError:
                _kill_tree(process.pid)
                await process.wait()
                return RunResult(False, error="Time Limit Exceeded", runtime_ms=int(self.run_timeout * 1000),
                                 memory_kb=watch.peak_kb, status=JudgeStatus.TIME_LIMIT)
            finally:
                watcher.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await watcher

        elapsed_ms = max(1, int((time.perf_counter() - start_time) * 1000))

        output_size = watch.output_size()
        if watch.output_exceeded or output_size > config.MAX_OUTPUT_SIZE:
            return RunResult(False, error=f"Output too large: {output_size} bytes (limit: {config.MAX_OUTPUT_SIZE})",
                             runtime_ms=elapsed_ms, memory_kb=watch.peak_kb)

        output = _read_capped(user_output)
        error = _read_capped(user_error)
        if process.returncode != 0 or error:
            return RunResult(False, output=output, error=error or f"Process exited with code {process.returncode}",
                             runtime_ms=elapsed_ms, memory_kb=watch.peak_kb)

        return RunResult(True, output=output.strip(), runtime_ms=elapsed_ms, memory_kb=watch.peak_kb,
                         status=JudgeStatus.ACCEPTED)

    def _sweep_if_needed(self):
        """Remove work directories left behind by crashed runs."""
        self._runs += 1
        if self._runs < config.STALE_SWEEP_EVERY:
            return
        self._runs = 0

        now = time.time()
        cleaned = 0
        for entry in self.temp_dir.iterdir():
            try:
                if now - entry.stat().st_mtime <= config.STALE_MAX_AGE:
                    continue
                if entry.is_dir():
                    shutil.rmtree(entry, ignore_errors=True)
                else:
                    entry.unlink()
                cleaned += 1
            except OSError:
                continue
        if cleaned:
            logger.info(f"[Runner] Swept {cleaned} stale entries from {self.temp_dir}")


# Process-wide runner, so the stale sweep counts runs across requests
_default_runner: Optional[LocalRunner] = None


def default_runner() -> LocalRunner:
    global _default_runner
    if _default_runner is None:
        _default_runner = LocalRunner()
    return _default_runner


class LocalJudge:
    """Judges test cases one by one through the local runner."""

    name = "local"

    def __init__(self, runner: Optional[LocalRunner] = None, stop_on_failure: bool = True):
        self.runner = runner or default_runner()
        self.stop_on_failure = stop_on_failure

    async def judge(self, code: str, language: str, test_cases: list) -> list:
        logger.info(f"[Runner] Executing {len(test_cases)} test cases locally for {language}")
        results = []
        for idx, case in enumerate(test_cases):
            try:
                run = await self.runner.run(code, language, case.input)
                result = self._to_result(idx, run, case)
            except Exception as e:
                logger.exception(f"[Runner] Test case {idx + 1} crashed")
                result = JudgeResult(
                    token=f"local-error-{idx}",
                    status=JudgeStatus.RUNTIME_ERROR,
                    stderr=str(e),
                    compile_output=str(e),
                    expected_output=case.expected_output,
                    actual_output="",
                )
            results.append(result)
            if self.stop_on_failure and not result.passed:
                break
        return results

    @staticmethod
    def _to_result(idx: int, run: RunResult, case) -> JudgeResult:
        status = run.status
        passed = False
        if run.success:
            passed = case.expected_output is None or compare(run.output, case.expected_output)
            if not passed:
                status = JudgeStatus.WRONG_ANSWER

        return JudgeResult(
            token=f"local-run-{idx}",
            status=status,
            stdout=run.output,
            stderr=run.error,
            compile_output=run.error if status == JudgeStatus.COMPILE_ERROR else "",
            time_used=run.runtime_ms,
            memory_used=run.memory_kb,
            passed=passed,
            expected_output=case.expected_output,
            actual_output=run.output,
        )
