"""Shared fixtures: a file-backed SQLite database per test and a few family builders."""
from __future__ import annotations

import os

# Point the module-level engine at SQLite before anything under kinfolk is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./kinfolk-test.db")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from kinfolk import models  # noqa: F401  registers tables on Base.metadata
from kinfolk.database import Base
from kinfolk.models import ParentFact, Person
from kinfolk.services.engine import RelationshipEngine


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "kinfolk.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return path


@pytest.fixture
def session_maker(db_path):
    # NullPool: each event loop (pytest-asyncio or TestClient's portal) opens its own connection
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def engine(session_maker):
    return RelationshipEngine(session_maker)


@pytest.fixture
def make_people(session_maker):
    """Create people by name, returning {name: id}. Pronouns via name=pronouns pairs."""

    async def _make(*names: str, **with_pronouns: str):
        ids = {}
        async with session_maker() as db:
            async with db.begin():
                for name in names:
                    p = Person(display_name=name, meta={})
                    db.add(p)
                    await db.flush()
                    ids[name] = p.id
                for name, pronouns in with_pronouns.items():
                    p = Person(display_name=name, pronouns=pronouns, meta={})
                    db.add(p)
                    await db.flush()
                    ids[name] = p.id
        return ids

    return _make


@pytest.fixture
def insert_raw_facts(session_maker):
    """Write ParentFact rows directly, skipping the guard (legacy / imported data)."""

    async def _insert(*pairs):
        async with session_maker() as db:
            async with db.begin():
                for parent_id, child_id in pairs:
                    db.add(ParentFact(parent_id=parent_id, child_id=child_id))
    return _insert
