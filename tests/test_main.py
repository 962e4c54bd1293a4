import pytest

from app import db
from app.config import get_settings
from app.core.runtime_state import is_scheduler_active
import app.main as main_module
from app.main import app, lifespan


@pytest.mark.anyio("asyncio")
async def test_lifespan_without_scheduler(monkeypatch):
    monkeypatch.setattr(get_settings(), "SCHEDULER_ENABLED", False)

    async with lifespan(app):
        assert db.is_initialised() is True
        assert is_scheduler_active() is False

    assert db.is_initialised() is False


@pytest.mark.anyio("asyncio")
async def test_lifespan_starts_scheduler_when_lock_is_won(monkeypatch):
    monkeypatch.setattr(get_settings(), "SCHEDULER_ENABLED", True)
    monkeypatch.setattr("app.main.try_acquire_scheduler_lock", lambda: True)
    released = []
    monkeypatch.setattr("app.main.release_scheduler_lock", lambda: released.append(True))

    async with lifespan(app):
        assert is_scheduler_active() is True
        job = main_module.scheduler.get_job("daily-settlement")
        assert job is not None

    assert is_scheduler_active() is False
    assert released == [True]


@pytest.mark.anyio("asyncio")
async def test_lifespan_skips_scheduler_when_lock_is_held(monkeypatch):
    monkeypatch.setattr(get_settings(), "SCHEDULER_ENABLED", True)
    monkeypatch.setattr("app.main.try_acquire_scheduler_lock", lambda: False)

    async with lifespan(app):
        assert is_scheduler_active() is False
