import itertools
from datetime import datetime, timedelta, timezone

import pytest

from event_storage import FileActivityStore, InMemoryActivityStore


START = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def iso(moment):
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


@pytest.fixture
def clock():
    """Часы, которые сдвигаются на секунду при каждом вызове."""
    ticks = itertools.count()

    def tick():
        return iso(START + timedelta(seconds=next(ticks)))

    return tick


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path, clock):
    """Оба бэкенда с маленьким лимитом истории."""
    if request.param == "memory":
        return InMemoryActivityStore(max_history=5, clock=clock)
    return FileActivityStore(data_dir=tmp_path, max_history=5, clock=clock)


@pytest.fixture
def track_a():
    return {"id": "a1", "title": "Gole Sangam", "singer": "Shajarian", "genre1": "classical"}


@pytest.fixture
def track_b():
    return {"id": "b2", "title": "Soltane Ghalbha", "singer": "Aref", "genre1": "pop"}
