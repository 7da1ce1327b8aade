import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

os.environ.setdefault("CINEMARANK_ENV", "test")

from cinemarank.database import init_db, make_engine, make_session_factory  # noqa: E402
from cinemarank.schemas import CinemaIn  # noqa: E402
from cinemarank.services.container import Services  # noqa: E402


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)


class FakeClock:
    """Strictly increasing timestamps, one second apart."""

    def __init__(self, start=datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            self.now += timedelta(seconds=1)
            return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'cinemarank.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def services(session_factory, clock):
    return Services(session_factory, retry_delay=0, clock=clock)


@pytest.fixture
def store(services):
    return services.reviews


@pytest.fixture
def likes(services):
    return services.likes


@pytest.fixture
def cinema(services):
    return services.cinemas.add_cinema(
        CinemaIn(
            id="cgv-yongsan",
            name="CGV 용산아이파크몰",
            address="서울 용산구 한강대로23길 55",
            lat=37.5298,
            lng=126.9648,
            tags=["IMAX", "4DX", "SCREENX"],
        )
    )
