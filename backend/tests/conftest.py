"""
Test Configuration — Fixtures for document stores, the transfer service and the test client.

Engine tests run against the in-memory store; the SQL store tests use a
throwaway SQLite file per test so every test starts from an empty database.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from api.deps import get_current_actor, get_transfer_service
from api.main import app
from docstore import InMemoryDocumentStore, SqlDocumentStore
from transfers.models import Actor
from transfers.service import TransferService

ADMIN = Actor(user_id="admin-1", name="Ada Admin", role="admin")


@pytest.fixture
def memory_store():
    return InMemoryDocumentStore()


@pytest.fixture
async def sql_store(tmp_path):
    """SQL store over a fresh SQLite database file."""
    store = SqlDocumentStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'farmstock.db'}")
    await store.create_schema()
    yield store
    await store.close()


@pytest.fixture
def service(memory_store):
    return TransferService(memory_store)


@pytest.fixture
def admin():
    return ADMIN


@pytest.fixture
async def farms(service):
    """Two farms; North Pasture holds 10 helmets."""
    north = await service.add_location("North Pasture")
    river = await service.add_location("River Bend")
    await service.add_stock(north.id, "helmet", 10)
    return {
        "x": north,
        "y": river,
        "x_user": Actor(user_id="user-x", location_id=north.id, name="Xavier"),
        "y_user": Actor(user_id="user-y", location_id=river.id, name="Yolanda"),
    }


@pytest.fixture
async def client(service):
    """Create an async test client bound to the in-memory service, acting as an admin."""
    app.dependency_overrides[get_transfer_service] = lambda: service
    app.dependency_overrides[get_current_actor] = lambda: ADMIN

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def act_as(client):
    """Switch the API client's caller for the rest of the test."""

    def _act_as(actor: Actor) -> None:
        app.dependency_overrides[get_current_actor] = lambda: actor

    return _act_as
