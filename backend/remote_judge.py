"""
Judge0 client - batch submission of one program against many test cases,
polled until the remote judge finishes.
"""
import asyncio
import logging
from typing import Dict, List, Optional

import aiohttp

import config
from comparator import compare
from judge import JudgeResult
from models import JudgeStatus

logger = logging.getLogger(__name__)

# Judge0 status ids
IN_QUEUE = 1
PROCESSING = 2
ACCEPTED = 3
TIME_LIMIT_EXCEEDED = 5
COMPILATION_ERROR = 6

STATUS_MAP = {
    3: JudgeStatus.ACCEPTED,
    4: JudgeStatus.WRONG_ANSWER,
    5: JudgeStatus.TIME_LIMIT,
    6: JudgeStatus.COMPILE_ERROR,
    7: JudgeStatus.RUNTIME_ERROR,  # SIGSEGV
    8: JudgeStatus.MEMORY_LIMIT,
    9: JudgeStatus.RUNTIME_ERROR,  # SIGFPE
    10: JudgeStatus.TIME_LIMIT,  # wall time
    11: JudgeStatus.RUNTIME_ERROR,  # NZEC
    12: JudgeStatus.RUNTIME_ERROR,  # other
    13: JudgeStatus.WRONG_ANSWER,  # internal error
    14: JudgeStatus.RUNTIME_ERROR,  # exec format error
}

RESULT_FIELDS = "token,status,stdout,stderr,time,memory,compile_output"


class RemoteJudgeError(Exception):
    pass


def map_status(status_id: Optional[int]) -> JudgeStatus:
    return STATUS_MAP.get(status_id, JudgeStatus.RUNTIME_ERROR)


class Judge0Client:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        host: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        mock_on_error: Optional[bool] = None,
    ):
        """
        Args:
            base_url: Judge0 server address
            api_key: service credential, an empty key disables the client
            poll_interval: seconds between batch status polls
            max_attempts: polls before giving up with a timeout result
            mock_on_error: degrade to synthetic results instead of raising
        """
        self.base_url = (base_url or config.JUDGE0_BASE_URL).rstrip("/")
        self.api_key = config.JUDGE0_API_KEY if api_key is None else api_key
        self.host = host or config.JUDGE0_HOST
        self.poll_interval = config.POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_attempts = config.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.mock_on_error = config.JUDGE0_MOCK_ON_ERROR if mock_on_error is None else mock_on_error
        self.headers = {
            "X-RapidAPI-Key": self.api_key,
            "X-RapidAPI-Host": self.host,
            "Content-Type": "application/json",
        }

    async def submit_batch(self, source_code: str, language: str, test_cases: list) -> List[Dict]:
        """Submit one request per test case and wait for the raw Judge0 results."""
        if not self.api_key:
            raise RemoteJudgeError("Judge0 API key is not configured")
        if language not in config.LANGUAGES:
            raise RemoteJudgeError(f"No Judge0 language id for {language}")

        language_id = config.LANGUAGES[language]["judge0_id"]
        submissions = [
            {
                "source_code": source_code,
                "language_id": language_id,
                "stdin": case.input,
                "expected_output": case.expected_output,
                **config.JUDGE0_LIMITS,
            }
            for case in test_cases
        ]

        logger.info(f"[Judge0] Submitting {language} code with {len(test_cases)} test cases")
        try:
            async with aiohttp.ClientSession(headers=self.headers) as session:
                async with session.post(
                    f"{self.base_url}/submissions/batch",
                    params={"base64_encoded": "false"},
                    json={"submissions": submissions},
                    timeout=aiohttp.ClientTimeout(total=config.JUDGE0_SUBMIT_TIMEOUT),
                ) as response:
                    response.raise_for_status()
                    created = await response.json()
            tokens = [item["token"] for item in created]
        except Exception as e:
            logger.error(f"[Judge0] Submission failed: {e}")
            if not self.mock_on_error:
                raise RemoteJudgeError(f"Judge0 submission failed: {e}") from e
            logger.warning("[Judge0] Using fallback mock results")
            return self.mock_results(test_cases)

        logger.info(f"[Judge0] Batch accepted, tokens: {tokens}")
        return await self.get_batch_results(tokens)

    async def get_batch_results(self, tokens: List[str]) -> List[Dict]:
        params = {
            "tokens": ",".join(tokens),
            "base64_encoded": "false",
            "fields": RESULT_FIELDS,
        }
        try:
            async with aiohttp.ClientSession(headers=self.headers) as session:
                for attempt in range(1, self.max_attempts + 1):
                    async with session.get(
                        f"{self.base_url}/submissions/batch",
                        params=params,
                        timeout=aiohttp.ClientTimeout(total=config.JUDGE0_POLL_TIMEOUT),
                    ) as response:
                        response.raise_for_status()
                        payload = await response.json()

                    submissions = payload["submissions"]
                    if all(sub["status"]["id"] not in (IN_QUEUE, PROCESSING) for sub in submissions):
                        logger.info("[Judge0] All submissions completed")
                        return submissions

                    logger.info(f"[Judge0] Not all completed, waiting... (attempt {attempt}/{self.max_attempts})")
                    await asyncio.sleep(self.poll_interval)
        except Exception as e:
            logger.error(f"[Judge0] Polling failed: {e}")
            if not self.mock_on_error:
                raise RemoteJudgeError(f"Judge0 polling failed: {e}") from e
            return [self.error_result(COMPILATION_ERROR, "Failed to get execution results")]

        logger.warning("[Judge0] Timeout waiting for submissions to complete")
        return [self.error_result(TIME_LIMIT_EXCEEDED, "Execution timeout")]

    @staticmethod
    def mock_results(test_cases: list) -> List[Dict]:
        return [
            {
                "token": f"mock-token-{idx}",
                "status": {"id": ACCEPTED, "description": JudgeStatus.ACCEPTED.value},
                "stdout": case.expected_output,
                "stderr": None,
                "compile_output": None,
                "time": "0.001",
                "memory": 1024,
            }
            for idx, case in enumerate(test_cases)
        ]

    @staticmethod
    def error_result(status_id: int, message: str) -> Dict:
        return {
            "token": "mock-error-token",
            "status": {"id": status_id, "description": map_status(status_id).value},
            "stdout": None,
            "stderr": message,
            "compile_output": message,
            "time": "0.000",
            "memory": 0,
        }

    @staticmethod
    def process_results(results: List[Dict], test_cases: list) -> List[JudgeResult]:
        """Pair raw results with test cases and re-check accepted output locally."""
        processed = []
        for idx, (result, case) in enumerate(zip(results, test_cases)):
            status = map_status((result.get("status") or {}).get("id"))
            stdout = result.get("stdout") or ""
            passed = False
            if status == JudgeStatus.ACCEPTED:
                passed = case.expected_output is None or compare(stdout, case.expected_output)
                if not passed:
                    status = JudgeStatus.WRONG_ANSWER

            processed.append(JudgeResult(
                token=result.get("token") or f"remote-{idx}",
                status=status,
                stdout=stdout,
                stderr=result.get("stderr") or "",
                compile_output=result.get("compile_output") or "",
                time_used=int(round(float(result.get("time") or 0) * 1000)),
                memory_used=int(float(result.get("memory") or 0)),
                passed=passed,
                expected_output=case.expected_output,
                actual_output=stdout,
            ))
        return processed


class RemoteJudge:
    name = "remote"

    def __init__(self, client: Optional[Judge0Client] = None):
        self.client = client or Judge0Client()

    async def judge(self, code: str, language: str, test_cases: list) -> List[JudgeResult]:
        raw = await self.client.submit_batch(code, language, test_cases)
        return self.client.process_results(raw, test_cases)
