import asyncio

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import build_engine, build_session_factory, init_db
from main import create_app
from models import User
from store import BookingStore

ADMIN_ID = "1001"


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}"


@pytest.fixture
def run_with_store(database_url):
    """Run ``scenario(store)`` against a fresh database in its own event loop."""

    def runner(scenario):
        async def main():
            engine = build_engine(Settings(database_url=database_url))
            await init_db(engine)
            try:
                return await scenario(BookingStore(build_session_factory(engine)))
            finally:
                await engine.dispose()

        return asyncio.run(main())

    return runner


@pytest.fixture
def users(run_with_store):
    async def seed(store: BookingStore):
        await store.save_user(User(id="42", email="alice@example.com", name="Alice", api_token="alice-token"))
        await store.save_user(User(id="43", email="bob@example.com", name="Bob", api_token="bob-token"))
        await store.save_user(User(id=ADMIN_ID, email="ops@example.com", name="Ops", api_token="admin-token"))

    run_with_store(seed)
    return {"alice": "alice-token", "bob": "bob-token", "admin": "admin-token"}


@pytest.fixture
def client(database_url, users):
    settings = Settings(
        database_url=database_url,
        admin_user_ids=frozenset({ADMIN_ID}),
        seed_rooms=["Lovelace", "Hopper"],
    )
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def rooms(client):
    return {room["name"]: room["id"] for room in client.get("/api/rooms").json()}
