"""Tests for API endpoints (router layer).

Most tests override get_item_service with an in-memory HistoricalCrudService,
so requests flow through the real service without a database. One class wires
the real dependency chain against SQLite.

Tests verify:
- HTTP status codes, including the error → status mapping
- Response schema shapes
- Static routes are not shadowed by /items/{id}
- The X-Principal-Id header requirement
"""

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import timedelta

import pytest
import pytest_asyncio
from conftest import T0
from fastapi import FastAPI, HTTPException
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from entity_history_engine.api.router import get_item_service, register_exception_handlers, router
from entity_history_engine.auth import PRINCIPAL_HEADER, get_current_principal
from entity_history_engine.core.items import ItemData
from entity_history_engine.core.services import HistoricalCrudService
from entity_history_engine.database import Base, get_db_session
from entity_history_engine.settings import Settings

ServiceFactory = Callable[..., HistoricalCrudService[ItemData]]


def build_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1")
    return app


@pytest.fixture()
def test_app(make_service: ServiceFactory) -> FastAPI:
    """Create a FastAPI test app whose item service runs on the in-memory backend.

    Args:
        make_service: Factory fixture for in-memory services.

    Returns:
        FastAPI app with the service dependency overridden.
    """
    app = build_app()
    app.dependency_overrides[get_item_service] = lambda: make_service()
    return app


@pytest_asyncio.fixture()
async def client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as client:
        yield client


async def create_item(client: AsyncClient, **body: object) -> dict:
    response = await client.post("/api/v1/items", json={"name": "widget", "value": "a", **body})
    assert response.status_code == 201
    return response.json()


class TestItemEndpoints:
    """CRUD endpoints and error mapping."""

    @pytest.mark.asyncio()
    async def test_create_item_returns_201(self, client: AsyncClient) -> None:
        body = await create_item(client)

        assert uuid.UUID(body["id"])
        assert body["name"] == "widget"
        assert body["value"] == "a"
        assert body["description"] is None

    @pytest.mark.asyncio()
    async def test_create_duplicate_id_returns_400(self, client: AsyncClient) -> None:
        item_id = str(uuid.uuid4())
        await create_item(client, id=item_id)

        response = await client.post("/api/v1/items", json={"id": item_id, "name": "again"})

        assert response.status_code == 400
        assert "already exists" in response.json()["detail"]

    @pytest.mark.asyncio()
    async def test_get_missing_item_returns_404(self, client: AsyncClient) -> None:
        response = await client.get(f"/api/v1/items/{uuid.uuid4()}")

        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

    @pytest.mark.asyncio()
    async def test_invalid_item_id_returns_422(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/items/not-a-uuid")

        assert response.status_code == 422

    @pytest.mark.asyncio()
    async def test_head_reports_existence(self, client: AsyncClient) -> None:
        body = await create_item(client)

        assert (await client.head(f"/api/v1/items/{body['id']}")).status_code == 200
        assert (await client.head(f"/api/v1/items/{uuid.uuid4()}")).status_code == 404

    @pytest.mark.asyncio()
    async def test_update_and_history(self, client: AsyncClient) -> None:
        body = await create_item(client)

        response = await client.put(f"/api/v1/items/{body['id']}", json={"name": "widget", "value": "b"})
        assert response.status_code == 200
        assert response.json()["value"] == "b"

        history = (await client.get(f"/api/v1/items/{body['id']}/history")).json()
        assert [e["action"] for e in history] == ["Create", "Update"]
        assert history[1]["field_changes"] == {"value": "b"}
        assert [e["sequence"] for e in history] == [1, 2]

    @pytest.mark.asyncio()
    async def test_list_items(self, client: AsyncClient) -> None:
        await create_item(client, name="one")
        await create_item(client, name="two")

        response = await client.get("/api/v1/items")

        assert response.status_code == 200
        assert sorted(item["name"] for item in response.json()) == ["one", "two"]

    @pytest.mark.asyncio()
    async def test_delete_then_restore(self, client: AsyncClient) -> None:
        body = await create_item(client)

        assert (await client.delete(f"/api/v1/items/{body['id']}")).status_code == 200
        assert (await client.get(f"/api/v1/items/{body['id']}")).status_code == 404

        response = await client.post(f"/api/v1/items/{body['id']}/restore")

        assert response.status_code == 200
        assert response.json()["value"] == "a"

    @pytest.mark.asyncio()
    async def test_restore_without_prior_state_returns_409(self, client: AsyncClient) -> None:
        body = await create_item(client)

        response = await client.post(f"/api/v1/items/{body['id']}/restore")

        assert response.status_code == 409

    @pytest.mark.asyncio()
    async def test_restore_and_copy_from_changeset(self, client: AsyncClient) -> None:
        body = await create_item(client)
        await client.put(f"/api/v1/items/{body['id']}", json={"name": "widget", "value": "b"})
        first = (await client.get(f"/api/v1/items/{body['id']}/history")).json()[0]["id"]

        copied = await client.post(f"/api/v1/items/{body['id']}/copy/{first}")
        assert copied.status_code == 201
        assert copied.json()["value"] == "a"
        assert copied.json()["id"] != body["id"]

        restored = await client.post(f"/api/v1/items/{body['id']}/restore/{first}")
        assert restored.status_code == 200
        assert restored.json()["value"] == "a"

        missing = await client.post(f"/api/v1/items/{body['id']}/restore/{uuid.uuid4()}")
        assert missing.status_code == 404

    @pytest.mark.asyncio()
    async def test_copy_returns_201(self, client: AsyncClient) -> None:
        body = await create_item(client)

        response = await client.post(f"/api/v1/items/{body['id']}/copy")

        assert response.status_code == 201
        assert response.json()["name"] == "widget"


class TestReadStatusEndpoints:
    """Read status, read-status views and most recently used."""

    @pytest.mark.asyncio()
    async def test_mark_read_and_unread(self, client: AsyncClient) -> None:
        body = await create_item(client)

        assert (await client.post(f"/api/v1/items/{body['id']}/read")).status_code == 204
        status = (await client.get(f"/api/v1/items/{body['id']}/read-status")).json()
        assert status["data"]["id"] == body["id"]
        assert status["metadata"]["last_viewed"] is not None
        assert status["metadata"]["new_stuff_available"] is False

        assert (await client.post(f"/api/v1/items/{body['id']}/unread")).status_code == 204
        status = (await client.get(f"/api/v1/items/{body['id']}/read-status")).json()
        assert status["metadata"]["last_viewed"] is None
        assert status["metadata"]["new_stuff_available"] is True

    @pytest.mark.asyncio()
    async def test_bulk_read_status(self, client: AsyncClient) -> None:
        await create_item(client, name="one")
        await create_item(client, name="two")

        assert (await client.post("/api/v1/items/read")).status_code == 204
        statuses = (await client.get("/api/v1/items/read-status")).json()
        assert len(statuses) == 2
        assert all(s["metadata"]["last_viewed"] is not None for s in statuses)

        assert (await client.post("/api/v1/items/unread")).status_code == 204
        statuses = (await client.get("/api/v1/items/read-status")).json()
        assert all(s["metadata"]["last_viewed"] is None for s in statuses)

    @pytest.mark.asyncio()
    async def test_most_recently_used(self, client: AsyncClient) -> None:
        body = await create_item(client)
        await client.get(f"/api/v1/items/{body['id']}")

        response = await client.get("/api/v1/items/most-recently-used", params={"limit": 5})

        assert response.status_code == 200
        assert [item["id"] for item in response.json()] == [body["id"]]


class TestDeltaEndpoint:
    """POST /items/{id}/delta."""

    @pytest.mark.asyncio()
    async def test_snapshot_is_default(self, client: AsyncClient) -> None:
        body = await create_item(client)

        response = await client.post(f"/api/v1/items/{body['id']}/delta", json={})

        assert response.status_code == 200
        delta = response.json()
        assert delta["mode"] == "Snapshot"
        assert delta["state"]["value"] == "a"
        assert delta["deleted"] is False

    @pytest.mark.asyncio()
    async def test_differential(self, client: AsyncClient) -> None:
        body = await create_item(client)
        await client.put(f"/api/v1/items/{body['id']}", json={"name": "widget", "value": "b"})

        response = await client.post(f"/api/v1/items/{body['id']}/delta", json={"mode": "Differential"})

        assert response.status_code == 200
        assert [e["action"] for e in response.json()["events"]] == ["Create", "Update"]

    @pytest.mark.asyncio()
    async def test_unsupported_mode_returns_400(self, client: AsyncClient) -> None:
        body = await create_item(client)

        response = await client.post(f"/api/v1/items/{body['id']}/delta", json={"mode": "Everything"})

        assert response.status_code == 400

    @pytest.mark.asyncio()
    async def test_inverted_range_returns_400(self, client: AsyncClient) -> None:
        body = await create_item(client)

        response = await client.post(
            f"/api/v1/items/{body['id']}/delta",
            json={"from": (T0 + timedelta(hours=1)).isoformat(), "to": T0.isoformat()},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio()
    async def test_unknown_item_returns_404(self, client: AsyncClient) -> None:
        response = await client.post(f"/api/v1/items/{uuid.uuid4()}/delta", json={})

        assert response.status_code == 404


class TestPrincipalDependency:
    """get_current_principal header handling."""

    def test_missing_header_is_unauthorized(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            get_current_principal(None)
        assert exc_info.value.status_code == 401

    def test_header_value_is_the_principal(self) -> None:
        assert get_current_principal(" alice ").get_principal_id() == "alice"


class TestFullStack:
    """Real dependency wiring: settings from app state, SQLite session, header principal."""

    @pytest_asyncio.fixture()
    async def stack_client(self) -> AsyncGenerator[AsyncClient, None]:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)

        async def session_override() -> AsyncGenerator[AsyncSession, None]:
            async with factory() as session:
                yield session

        app = build_app()
        app.state.settings = Settings(database_url="sqlite+aiosqlite:///:memory:")
        app.dependency_overrides[get_db_session] = session_override

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
        await engine.dispose()

    @pytest.mark.asyncio()
    async def test_requests_without_principal_are_rejected(self, stack_client: AsyncClient) -> None:
        response = await stack_client.get("/api/v1/items")

        assert response.status_code == 401

    @pytest.mark.asyncio()
    async def test_history_is_stamped_with_the_header_principal(self, stack_client: AsyncClient) -> None:
        headers = {PRINCIPAL_HEADER: "alice"}
        created = await stack_client.post("/api/v1/items", json={"name": "widget", "value": "a"}, headers=headers)
        assert created.status_code == 201
        item_id = created.json()["id"]

        updated = await stack_client.put(
            f"/api/v1/items/{item_id}",
            json={"name": "widget", "value": "b"},
            headers={PRINCIPAL_HEADER: "bob"},
        )
        assert updated.status_code == 200

        history = (await stack_client.get(f"/api/v1/items/{item_id}/history", headers=headers)).json()
        assert [(e["action"], e["created_by"]) for e in history] == [("Create", "alice"), ("Update", "bob")]


class TestCreateApp:
    """Application factory wiring."""

    def test_routes_are_mounted_under_api_v1(self) -> None:
        from entity_history_engine.main import create_app

        app = create_app()
        paths = {getattr(route, "path", None) for route in app.routes}

        assert "/api/v1/items" in paths
        assert "/api/v1/items/{item_id}/delta" in paths
        assert isinstance(app.state.settings, Settings)
