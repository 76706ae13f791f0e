"""
Pytest configuration and fixtures for testing
"""
import os

# Settings are read at import time; configure them before the app is imported
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ["RATE_LIMIT_PER_MINUTE"] = "10000"
os.environ.pop("REDIS_URL", None)
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("OPENAI_API_KEY", None)

import asyncio
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from auth_utils import hash_password, create_jwt
from config.settings import settings, TRIAL_NORMAL, PLAN_STATUS_TRIAL
from database import Base, get_db
import database_models  # noqa: F401
from database_models import Profile

TEST_PASSWORD = "StrongPass123!"
# Hashing is slow with argon2; reuse one hash for seeded profiles
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


def _make_engine(tmp_path):
    # A file database with NullPool: every session gets a fresh connection,
    # so sync fixtures and the TestClient loop never share one.
    return create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )


async def _create_tables(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def test_db(tmp_path):
    """
    Fixture that provides an isolated SQLite database session for each test.

    This fixture:
    - Creates all tables before the test runs
    - Yields a clean AsyncSession for the test
    - Disposes of the engine after the test completes
    """
    engine = _make_engine(tmp_path)
    await _create_tables(engine)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    await engine.dispose()


@pytest.fixture
def session_factory(tmp_path):
    engine = _make_engine(tmp_path)
    asyncio.run(_create_tables(engine))
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def run_db(session_factory):
    """Run `fn(session)` in its own session and commit. For seeding and assertions in sync tests."""
    def _run(fn):
        async def _inner():
            async with session_factory() as session:
                result = await fn(session)
                await session.commit()
                return result
        return asyncio.run(_inner())
    return _run


@pytest.fixture
def create_profile(run_db):
    """Insert a profile; keyword arguments override the trial defaults."""
    counter = {"n": 0}

    def _create(**fields) -> Profile:
        counter["n"] += 1
        data = {
            "email": f"user{counter['n']}@example.com",
            "hashed_password": TEST_PASSWORD_HASH,
            "trial_type": TRIAL_NORMAL,
            "plan_status": PLAN_STATUS_TRIAL,
            "registered_at": datetime.now(timezone.utc),
        }
        data.update(fields)

        async def _insert(db):
            profile = Profile(**data)
            db.add(profile)
            await db.flush()
            return profile

        return run_db(_insert)

    return _create


def auth_headers(profile) -> dict:
    return {"Authorization": f"Bearer {create_jwt(profile.id)}"}


@pytest.fixture
def client(session_factory, tmp_path, monkeypatch):
    """FastAPI TestClient with the test database and a temporary upload directory"""
    from main import app

    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()
