import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from config import LANGUAGES, LOG_LEVEL
from models import init_db, get_session, Problem, Submission, User, JudgeStatus
from grader import (
    PROBLEM_ID_PATTERN, JudgingUnavailable, SubmissionRejected,
    default_judges, run_solution, submit_solution,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="CodeArena Judge")

SERVICE_UNAVAILABLE = "Code execution services temporarily unavailable"

@app.on_event("startup")
async def startup():
    await init_db()
    logger.info("Database ready")

# ===== Dependencies =====

class SubmitRequest(BaseModel):
    problemId: Optional[str] = None
    code: Optional[str] = None
    language: Optional[str] = None

class RunRequest(SubmitRequest):
    input: Optional[str] = None

async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session)
) -> User:
    """Resolve the caller from the id forwarded by the auth gateway"""
    if not x_user_id:
        raise HTTPException(401, "Not authenticated")
    user = await session.get(User, x_user_id)
    if not user:
        raise HTTPException(401, "Unknown user")
    return user

def get_judges():
    return default_judges()

def check_pagination(page: int, limit: int):
    if page < 1 or limit < 1 or limit > 100:
        raise HTTPException(400, "Invalid pagination parameters")

def pagination(page: int, limit: int, total: int) -> dict:
    total_pages = (total + limit - 1) // limit
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "totalSubmissions": total,
        "hasNext": page < total_pages,
        "hasPrev": page > 1
    }

def submission_summary(s: Submission) -> dict:
    return {
        "_id": s.id,
        "status": s.status,
        "runtime": s.runtime,
        "memory": s.memory,
        "testCasesPassed": s.test_cases_passed,
        "totalTestCases": s.total_test_cases,
        "errorMessage": s.error_message,
        "language": s.language,
        "submittedAt": s.submitted_at.isoformat() if s.submitted_at else None
    }

def problem_summary(p: Problem) -> dict:
    return {
        "_id": p.id,
        "title": p.title,
        "difficulty": p.difficulty,
        "acceptanceRate": p.acceptance_rate
    }

# ===== Submission APIs =====

@app.post("/api/submissions")
async def submit(
    body: SubmitRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    judges: list = Depends(get_judges)
):
    """Judge code against every test case of a problem and store the verdict"""
    try:
        submission, judged = await submit_solution(
            session, user, body.problemId, body.code, body.language, judges
        )
    except SubmissionRejected as e:
        raise HTTPException(e.status_code, e.message)

    if not judged:
        return JSONResponse(status_code=500, content={
            "success": False,
            "message": SERVICE_UNAVAILABLE,
            "submission": submission_summary(submission)
        })
    return {"success": True, "submission": submission_summary(submission)}

@app.post("/api/submissions/run", dependencies=[Depends(get_current_user)])
async def run(
    body: RunRequest,
    session: AsyncSession = Depends(get_session),
    judges: list = Depends(get_judges)
):
    """Run code on one test case without recording anything"""
    try:
        outcome = await run_solution(
            session, body.problemId, body.code, body.language, body.input, judges
        )
    except SubmissionRejected as e:
        raise HTTPException(e.status_code, e.message)
    except JudgingUnavailable as e:
        logger.error(f"[Run {body.problemId}] All execution methods failed: {e}")
        return JSONResponse(status_code=500, content={
            "success": False,
            "message": SERVICE_UNAVAILABLE,
            "status": JudgeStatus.RUNTIME_ERROR.value,
            "output": "",
            "errorMessage": "Execution service unavailable. Please try again."
        })

    verdict = outcome.verdict
    accepted = verdict.status == JudgeStatus.ACCEPTED
    return {
        "success": True,
        "status": verdict.status.value,
        "runtime": verdict.runtime,
        "memory": verdict.memory,
        "output": outcome.output,
        "errorMessage": "" if accepted else verdict.error_message,
        "expectedOutput": outcome.case.expected_output or "",
        "actualOutput": outcome.output,
        "input": outcome.case.input
    }

@app.get("/api/submissions")
async def list_submissions(
    page: int = 1,
    limit: int = 20,
    problemId: Optional[str] = None,
    status: Optional[str] = None,
    language: Optional[str] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """List the caller's submissions, newest first"""
    check_pagination(page, limit)

    filters = [Submission.user_id == user.id]
    if problemId and PROBLEM_ID_PATTERN.match(problemId):
        filters.append(Submission.problem_id == problemId)
    if status:
        filters.append(Submission.status == status)
    if language:
        filters.append(Submission.language == language)

    total = await session.scalar(select(func.count(Submission.id)).where(*filters))
    result = await session.execute(
        select(Submission, Problem)
        .join(Problem, Problem.id == Submission.problem_id)
        .where(*filters)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return {
        "success": True,
        "submissions": [
            {**submission_summary(s), "problem": problem_summary(p)}
            for s, p in result.all()
        ],
        "pagination": pagination(page, limit, total or 0)
    }

@app.get("/api/submissions/stats")
async def submission_stats(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Aggregate the caller's submissions by status, language, difficulty and day"""
    mine = Submission.user_id == user.id

    by_status = await session.execute(
        select(Submission.status, func.count(Submission.id)).where(mine).group_by(Submission.status)
    )
    by_language = await session.execute(
        select(Submission.language, func.count(Submission.id)).where(mine).group_by(Submission.language)
    )
    by_difficulty = await session.execute(
        select(Problem.difficulty, func.count(func.distinct(Submission.problem_id)))
        .join(Problem, Problem.id == Submission.problem_id)
        .where(mine, Submission.status == JudgeStatus.ACCEPTED.value)
        .group_by(Problem.difficulty)
    )
    day = func.date(Submission.submitted_at)
    recent = await session.execute(
        select(day, func.count(Submission.id))
        .where(mine, Submission.submitted_at >= datetime.utcnow() - timedelta(days=7))
        .group_by(day)
        .order_by(day)
    )

    status_counts = dict(by_status.all())
    return {
        "success": True,
        "stats": {
            "totalSubmissions": sum(status_counts.values()),
            "byStatus": status_counts,
            "byLanguage": dict(by_language.all()),
            "solvedByDifficulty": dict(by_difficulty.all()),
            "recentActivity": [{"date": str(d), "count": c} for d, c in recent.all()],
            "solved": {
                "easy": user.easy_solved,
                "medium": user.medium_solved,
                "hard": user.hard_solved,
                "total": user.total_solved
            }
        }
    }

@app.get("/api/submissions/problem/{problem_id}")
async def problem_submissions(
    problem_id: str,
    page: int = 1,
    limit: int = 10,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """The caller's submissions for one problem"""
    if not PROBLEM_ID_PATTERN.match(problem_id):
        raise HTTPException(400, "Invalid problem ID")
    check_pagination(page, limit)
    problem = await session.get(Problem, problem_id)
    if not problem:
        raise HTTPException(404, "Problem not found")

    filters = [Submission.user_id == user.id, Submission.problem_id == problem_id]
    total = await session.scalar(select(func.count(Submission.id)).where(*filters))
    result = await session.execute(
        select(Submission)
        .where(*filters)
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return {
        "success": True,
        "problem": problem_summary(problem),
        "submissions": [submission_summary(s) for s in result.scalars().all()],
        "pagination": pagination(page, limit, total or 0)
    }

@app.get("/api/submissions/{submission_id}")
async def get_submission(
    submission_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Get one submission including its code"""
    submission = await session.get(Submission, submission_id)
    if not submission:
        raise HTTPException(404, "Submission not found")
    if submission.user_id != user.id and user.role != "admin":
        raise HTTPException(403, "Not authorized to view this submission")

    problem = await session.get(Problem, submission.problem_id)
    return {
        "success": True,
        "submission": {
            **submission_summary(submission),
            "code": submission.code,
            "user": submission.user_id,
            "problem": problem_summary(problem) if problem else None
        }
    }

# ===== Config APIs =====

@app.get("/api/languages")
async def get_languages():
    """Get supported languages"""
    return {
        lang: {"judge0_id": cfg["judge0_id"], "compiled": "compile" in cfg}
        for lang, cfg in LANGUAGES.items()
    }

@app.get("/api/health")
async def health():
    return {"status": "OK", "message": "Server is running!", "timestamp": datetime.utcnow().isoformat()}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
