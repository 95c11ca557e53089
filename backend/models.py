from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Float, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base, relationship
from datetime import datetime
import enum

from config import DATABASE_URL

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()

class JudgeStatus(str, enum.Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    WRONG_ANSWER = "Wrong Answer"
    TIME_LIMIT = "Time Limit Exceeded"
    RUNTIME_ERROR = "Runtime Error"
    COMPILE_ERROR = "Compilation Error"
    # Reported by the remote judge only; stored as Runtime Error
    MEMORY_LIMIT = "Memory Limit Exceeded"

class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    username = Column(String(64), unique=True, nullable=False)
    role = Column(String(16), default="user")
    easy_solved = Column(Integer, default=0)
    medium_solved = Column(Integer, default=0)
    hard_solved = Column(Integer, default=0)
    total_solved = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

class SolvedProblem(Base):
    __tablename__ = "solved_problems"
    __table_args__ = (UniqueConstraint("user_id", "problem_id", name="uq_solved_user_problem"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    problem_id = Column(String(64), ForeignKey("problems.id"), nullable=False)
    submission_id = Column(Integer, ForeignKey("submissions.id"))
    solved_at = Column(DateTime, default=datetime.utcnow)

class Problem(Base):
    __tablename__ = "problems"

    id = Column(String(64), primary_key=True)
    title = Column(String(256), default="")
    difficulty = Column(String(16), default="easy")
    total_submissions = Column(Integer, default=0)
    correct_submissions = Column(Integer, default=0)
    acceptance_rate = Column(Float, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)

    test_cases = relationship(
        "TestCase", order_by="TestCase.position", lazy="selectin", cascade="all, delete-orphan"
    )

class TestCase(Base):
    __tablename__ = "test_cases"
    __test__ = False  # not a pytest class

    id = Column(Integer, primary_key=True, autoincrement=True)
    problem_id = Column(String(64), ForeignKey("problems.id"), nullable=False)
    position = Column(Integer, default=0)
    input = Column(Text, nullable=False, default="")
    expected_output = Column(Text, nullable=False, default="")
    explanation = Column(Text, default="")
    is_public = Column(Boolean, default=False)

class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        Index("ix_submissions_user_submitted", "user_id", "submitted_at"),
        Index("ix_submissions_problem_status", "problem_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    problem_id = Column(String(64), ForeignKey("problems.id"), nullable=False)
    code = Column(Text, nullable=False)
    language = Column(String(16), nullable=False)
    status = Column(String(32), default=JudgeStatus.PENDING.value)
    runtime = Column(Integer, default=0)  # ms
    memory = Column(Integer, default=0)  # KB
    test_cases_passed = Column(Integer, default=0)
    total_test_cases = Column(Integer, default=0)
    error_message = Column(Text, default="")
    submitted_at = Column(DateTime, default=datetime.utcnow)

async def init_db(bind=None):
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def get_session():
    async with async_session() as session:
        yield session
