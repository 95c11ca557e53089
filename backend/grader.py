"""Judging orchestration: validation, judge fallback, verdicts and statistics."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

import config
from comparator import normalize, strip_comments
from judge import JudgeResult, LocalJudge, TestCaseData
from models import JudgeStatus, Problem, SolvedProblem, Submission, User
from remote_judge import RemoteJudge

logger = logging.getLogger(__name__)

PROBLEM_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
UNAVAILABLE_MESSAGE = "All code execution services unavailable. Please try again."
RECORD_FAILED_MESSAGE = "Failed to record judging result. Please try again."


class JudgeProvider(Protocol):
    name: str

    async def judge(self, code: str, language: str, test_cases: list) -> List[JudgeResult]:
        ...


class SubmissionRejected(Exception):
    """Client error found before any judging or persistence."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class JudgingUnavailable(Exception):
    pass


@dataclass
class Verdict:
    status: JudgeStatus
    test_cases_passed: int = 0
    runtime: int = 0  # ms
    memory: int = 0  # KB
    error_message: str = ""


@dataclass
class RunOutcome:
    case: TestCaseData
    verdict: Verdict
    output: str


def default_judges() -> List[JudgeProvider]:
    return [RemoteJudge(), LocalJudge()]


def validate_request(code: Optional[str], problem_id: Optional[str], language: Optional[str]):
    if not code or not code.strip():
        raise SubmissionRejected(400, "Code cannot be empty")
    if not problem_id or not language:
        raise SubmissionRejected(400, "Problem ID and language are required")
    if not PROBLEM_ID_PATTERN.match(str(problem_id)):
        raise SubmissionRejected(400, "Invalid problem ID")
    if language not in config.SUPPORTED_LANGUAGES:
        raise SubmissionRejected(
            400, f"Unsupported language. Supported languages: {', '.join(config.SUPPORTED_LANGUAGES)}"
        )


def ensure_meaningful(code: str, language: str):
    if len(strip_comments(code, language)) < config.MIN_CODE_LENGTH:
        raise SubmissionRejected(400, "Please write meaningful code before submitting")


async def load_problem(session: AsyncSession, problem_id: str) -> Problem:
    problem = await session.get(Problem, problem_id)
    if not problem:
        raise SubmissionRejected(404, "Problem not found")
    return problem


async def judge_with_fallback(judges: List[JudgeProvider], code: str, language: str,
                              test_cases: list, tag: str = "") -> List[JudgeResult]:
    """Return the results of the first judge that does not raise."""
    errors = []
    for judge in judges:
        try:
            results = await judge.judge(code, language, test_cases)
            logger.info(f"{tag} Judged by {judge.name} judge")
            return results
        except Exception as e:
            logger.warning(f"{tag} {judge.name} judge failed, falling back: {e}")
            errors.append(f"{judge.name}: {e}")
    raise JudgingUnavailable("; ".join(errors) or "no judges configured")


def reduce_results(results: List[JudgeResult], total: int) -> Verdict:
    passed = 0
    runtime = 0
    memory = 0
    status = None
    error_message = ""

    for idx, result in enumerate(results, 1):
        runtime = max(runtime, result.time_used)
        memory = max(memory, result.memory_used)

        if result.status == JudgeStatus.ACCEPTED and result.passed:
            passed += 1
            continue

        status = result.status if result.status != JudgeStatus.ACCEPTED else JudgeStatus.WRONG_ANSWER
        error_message = result.stderr or result.compile_output or f"Test case {idx} failed"
        if status == JudgeStatus.WRONG_ANSWER:
            error_message += (
                f'\nExpected: "{result.expected_output}"'
                f'\nGot: "{result.actual_output}"'
                f'\nNormalized Expected: "{normalize(result.expected_output)}"'
                f'\nNormalized Actual: "{normalize(result.actual_output)}"'
            )
        elif status == JudgeStatus.MEMORY_LIMIT:
            status = JudgeStatus.RUNTIME_ERROR
            error_message = f"{JudgeStatus.MEMORY_LIMIT.value}: {error_message}"
        break

    if status is None:
        if passed == total:
            status = JudgeStatus.ACCEPTED
        else:
            status = JudgeStatus.WRONG_ANSWER
            error_message = f"Passed {passed}/{total} test cases"

    return Verdict(status, passed, runtime, memory, error_message)


def _insert_for(session: AsyncSession):
    if session.bind is not None and session.bind.dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


async def record_attempt(session: AsyncSession, problem_id: str, accepted: bool):
    """Count one judged attempt; the rate is recomputed inside the same UPDATE."""
    inc = 1 if accepted else 0
    await session.execute(
        update(Problem)
        .where(Problem.id == problem_id)
        .values(
            total_submissions=Problem.total_submissions + 1,
            correct_submissions=Problem.correct_submissions + inc,
            acceptance_rate=(Problem.correct_submissions + inc) * 100.0 / (Problem.total_submissions + 1),
        )
        .execution_options(synchronize_session=False)
    )


async def mark_solved(session: AsyncSession, user_id: str, problem: Problem, submission_id: int) -> bool:
    """Add the problem to the user's solved set once; returns False if already there."""
    insert = _insert_for(session)
    result = await session.execute(
        insert(SolvedProblem.__table__)
        .values(user_id=user_id, problem_id=problem.id, submission_id=submission_id, solved_at=datetime.utcnow())
        .on_conflict_do_nothing(index_elements=["user_id", "problem_id"])
    )
    if result.rowcount != 1:
        logger.info(f"User {user_id} already solved problem {problem.id}")
        return False

    values = {"total_solved": User.total_solved + 1}
    if problem.difficulty in config.DIFFICULTIES:
        column = f"{problem.difficulty}_solved"
        values[column] = getattr(User, column) + 1
    await session.execute(
        update(User).where(User.id == user_id).values(**values).execution_options(synchronize_session=False)
    )
    logger.info(f"User {user_id} solved problem {problem.id}")
    return True


async def store_verdict(session: AsyncSession, submission: Submission, verdict: Verdict,
                        problem: Problem, user_id: str):
    """Write the terminal state and statistics in one transaction."""
    submission.status = verdict.status.value
    submission.runtime = verdict.runtime
    submission.memory = verdict.memory
    submission.test_cases_passed = verdict.test_cases_passed
    submission.error_message = verdict.error_message

    accepted = verdict.status == JudgeStatus.ACCEPTED
    await record_attempt(session, problem.id, accepted)
    if accepted:
        await mark_solved(session, user_id, problem, submission.id)
    await session.commit()


async def submit_solution(session: AsyncSession, user: User, problem_id: Optional[str], code: Optional[str],
                          language: Optional[str], judges: Optional[List[JudgeProvider]] = None
                          ) -> Tuple[Submission, bool]:
    """Judge a submission and persist it.

    Returns the stored submission and whether a verdict was judged and
    recorded. Even when no judge is available the attempt is counted on the
    problem. If recording fails the row is still moved out of Pending.
    """
    validate_request(code, problem_id, language)
    problem = await load_problem(session, problem_id)
    ensure_meaningful(code, language)
    if not problem.test_cases:
        raise SubmissionRejected(400, "Problem has no test cases")

    code = code.strip()
    test_cases = [TestCaseData(tc.input, tc.expected_output) for tc in problem.test_cases]
    submission = Submission(
        user_id=user.id,
        problem_id=problem.id,
        code=code,
        language=language,
        total_test_cases=len(test_cases),
        status=JudgeStatus.PENDING.value,
    )
    session.add(submission)
    await session.commit()
    await session.refresh(submission)

    tag = f"[Judge #{submission.id}]"
    logger.info(f"{tag} Problem: {problem.id}, Language: {language}, Test cases: {len(test_cases)}")

    judged = True
    try:
        results = await judge_with_fallback(judges or default_judges(), code, language, test_cases, tag)
        verdict = reduce_results(results, len(test_cases))
    except Exception:
        logger.exception(f"{tag} All execution methods failed")
        verdict = Verdict(JudgeStatus.RUNTIME_ERROR, error_message=UNAVAILABLE_MESSAGE)
        judged = False

    try:
        await store_verdict(session, submission, verdict, problem, user.id)
    except Exception:
        logger.exception(f"{tag} Failed to store verdict, marking submission as {JudgeStatus.RUNTIME_ERROR.value}")
        await session.rollback()
        await session.refresh(submission)
        submission.status = JudgeStatus.RUNTIME_ERROR.value
        submission.error_message = RECORD_FAILED_MESSAGE
        await session.commit()
        judged = False

    logger.info(f"{tag} Result: {submission.status}, Time: {submission.runtime}ms, "
                f"Passed: {submission.test_cases_passed}/{submission.total_test_cases}")
    return submission, judged


async def run_solution(session: AsyncSession, problem_id: Optional[str], code: Optional[str],
                       language: Optional[str], stdin: Optional[str] = None,
                       judges: Optional[List[JudgeProvider]] = None) -> RunOutcome:
    """Judge one ad-hoc test case without touching submissions or statistics.

    Custom input has no expected output, so only execution success counts.
    Without it the problem's first public test case is used.
    """
    validate_request(code, problem_id, language)
    problem = await load_problem(session, problem_id)
    ensure_meaningful(code, language)

    if stdin:
        case = TestCaseData(stdin, None)
    else:
        if not problem.test_cases:
            raise SubmissionRejected(400, "Problem has no test cases")
        example = next((tc for tc in problem.test_cases if tc.is_public), problem.test_cases[0])
        case = TestCaseData(example.input, example.expected_output)

    tag = f"[Run {problem.id}]"
    results = await judge_with_fallback(judges or default_judges(), code.strip(), language, [case], tag)
    verdict = reduce_results(results, 1)
    output = results[0].actual_output or "" if results else ""
    return RunOutcome(case, verdict, output)
