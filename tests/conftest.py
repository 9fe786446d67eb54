"""
tests/conftest.py — Shared Test Fixtures
=========================================

Every store-level test can run against both backends: the ``store``
fixture is parametrized over a LocalStore on in-memory blob storage and a
RemoteStore on a file-backed SQLite database created per test.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import Engine

from qaboard.database.engine import create_db_engine, init_db
from qaboard.models import Role, Session
from qaboard.services.board_service import BoardService
from qaboard.store.blob import MemoryBlobStorage
from qaboard.store.local import LocalStore
from qaboard.store.remote import RemoteStore

TEST_ACCESS_KEY = "test-access-key-for-pytest-only-" + "x" * 32


# Helper to run async code without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.run(coro)


def register(service: BoardService, name: str, role: Role | str = Role.STUDENT) -> Session:
    """Register *name* with a derived email and password."""
    return run_async(
        service.register_user(name, role, f"{name.lower()}@example.com", f"pw-{name}")
    )


@pytest.fixture
def db_engine(tmp_path) -> Engine:
    """File-backed SQLite engine with all QA Board tables.

    A file (not ``:memory:``) so worker threads each get their own
    connection, the way a server database behaves.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'remote.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def local_store() -> LocalStore:
    return LocalStore(MemoryBlobStorage())


@pytest.fixture
def remote_store(db_engine) -> RemoteStore:
    return RemoteStore(db_engine, TEST_ACCESS_KEY)


@pytest.fixture(params=["local", "remote"])
def store(request):
    """Each backend in turn."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def service(store) -> BoardService:
    return BoardService(store)


@pytest.fixture
def teacher(service) -> Session:
    return register(service, "Tanaka", Role.TEACHER)


@pytest.fixture
def student_a(service) -> Session:
    return register(service, "Aiko", Role.STUDENT)


@pytest.fixture
def student_b(service) -> Session:
    return register(service, "Ben", Role.STUDENT)


@pytest.fixture
def room(service, teacher):
    return run_async(service.create_room(teacher, "Algorithms", "#algo"))
