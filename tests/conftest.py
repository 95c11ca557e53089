import asyncio
import os
import tempfile

os.environ.setdefault("CODEARENA_DATA_DIR", tempfile.mkdtemp(prefix="codearena-data-"))
os.environ.setdefault("CODE_RUNNER_DIR", tempfile.mkdtemp(prefix="codearena-runner-"))

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from models import Problem, TestCase, User, init_db

# (input, expected_output, is_public)
ADD_TWO_CASES = [("2 3", "5", True), ("10 20", "30", False), ("-1 1", "0", False)]


async def _seed(factory):
    async with factory() as session:
        session.add_all([
            User(id="u1", username="alice"),
            User(id="u2", username="bob"),
            User(id="admin", username="root", role="admin"),
        ])
        problem = Problem(id="add-two", title="Add Two Numbers", difficulty="easy")
        problem.test_cases = [
            TestCase(position=i, input=inp, expected_output=out, is_public=public)
            for i, (inp, out, public) in enumerate(ADD_TWO_CASES)
        ]
        session.add(problem)
        session.add(Problem(id="sum-once", title="Sum Once", difficulty="medium",
                            test_cases=[TestCase(position=0, input="2 3", expected_output="5", is_public=True)]))
        session.add(Problem(id="no-tests", title="Draft", difficulty="hard"))
        await session.commit()


@pytest.fixture
def db(tmp_path):
    """Session factory bound to a fresh seeded SQLite file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(init_db(engine))
    asyncio.run(_seed(factory))
    yield factory
    asyncio.run(engine.dispose())


@pytest.fixture
def fetch(db):
    """Load one row by primary key in a fresh session."""
    def _fetch(model, key):
        async def _get():
            async with db() as session:
                return await session.get(model, key)
        return asyncio.run(_get())
    return _fetch


@pytest.fixture
def count(db):
    """Count rows of a model, optionally filtered."""
    from sqlalchemy import func, select

    def _count(model, *filters):
        async def _run():
            async with db() as session:
                return await session.scalar(select(func.count()).select_from(model).where(*filters))
        return asyncio.run(_run())
    return _count
