"""
Shared fixtures: settings isolated from the environment, an in-memory
store per test, and services bound to that store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from tableside.core.config import EnvironmentMode, Settings
from tableside.schemas import LineItem, MenuItem, Portion
from tableside.services.menu import MenuCatalog
from tableside.services.sessions import SessionService
from tableside.services.store import InMemoryDocumentStore


class StepClock:
    """Deterministic clock; every call is one second later than the last."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 19, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        env_mode=EnvironmentMode.DEVELOPMENT,
        data_directory=str(tmp_path / "data"),
        max_append_attempts=10,
    )


@pytest.fixture
async def store():
    store = InMemoryDocumentStore()
    yield store
    await store.close()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def service(store, settings, clock):
    return SessionService(store, settings, clock=clock)


@pytest.fixture
def catalog(store, settings):
    return MenuCatalog(store, settings)


@pytest.fixture
def make_item():
    """Build a line item with sensible defaults."""
    def _make(name="Paneer Tikka", price=270, quantity=1, portion=Portion.FULL):
        return LineItem(name=name, price=price, quantity=quantity, portion=portion)
    return _make


@pytest.fixture
def paneer():
    return MenuItem.from_document("m1", {
        "name": "Paneer Tikka",
        "price": {"full": 270, "half": 150},
        "category": "starter",
        "spiceLevel": "Spicy",
    })


@pytest.fixture
def papad():
    return MenuItem.from_document("m2", {
        "name": "Roasted Papad",
        "price": {"full": 45},
        "noPortion": True,
        "category": "starter",
    })
