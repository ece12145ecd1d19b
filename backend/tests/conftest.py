from __future__ import annotations

import pytest
import pytest_asyncio

from sharespace.backend.service import Backend
from sharespace.core.config import Settings
from sharespace.stores.app import AppStore


ADMIN_EMAIL = "admin@campus.edu"
PASSWORD = "secret123"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        JWT_SECRET_KEY="test-secret",
        ADMIN_EMAILS=ADMIN_EMAIL,
        STORAGE_ROOT=str(tmp_path / "storage"),
        STORAGE_PUBLIC_URL="http://testserver/storage",
        SESSION_FILE=str(tmp_path / "session.json"),
        RESEND_API_KEY=None,
    )


@pytest_asyncio.fixture
async def backend(settings):
    b = Backend(settings)
    await b.create_all()
    try:
        yield b
    finally:
        await b.aclose()


@pytest.fixture
def settle(backend):
    """Run queued change notifications and cache restarts to completion."""

    async def _settle(*apps: AppStore) -> None:
        for _ in range(10):
            await backend.drain()
            for app in apps:
                await app.settle()
            if not backend.dispatcher.pending and not any(app.pending for app in apps):
                return

    return _settle


@pytest_asyncio.fixture
async def make_app(backend):
    apps: list[AppStore] = []

    async def _make(token_storage=None) -> AppStore:
        app = AppStore(backend, token_storage)
        await app.start()
        apps.append(app)
        return app

    yield _make
    for app in apps:
        await app.aclose()


@pytest.fixture
def make_user(make_app, settle):
    async def _make(name: str, email: str | None = None, **profile) -> AppStore:
        app = await make_app()
        email = email or f"{name.lower().replace(' ', '.')}@campus.edu"
        form = {"full_name": name, "email": email, "college": "North Campus", **profile}
        res = await app.session.register(form, PASSWORD)
        assert res.success, res.error
        await settle(app)
        return app

    return _make


def product_draft(title: str = "Desk lamp", **overrides) -> dict:
    data = {
        "title": title,
        "description": "Barely used, works fine",
        "price": "12.50",
        "category": "Furniture",
        "condition": "Good",
    }
    data.update(overrides)
    return data
