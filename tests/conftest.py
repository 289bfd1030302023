import datetime
import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from newtab.storage import MemoryStorage  # noqa: E402


class FakeClock:
    """Controllable local-time source for cache and token expiry tests."""

    def __init__(self, start: datetime.datetime) -> None:
        self.current = start

    def __call__(self) -> datetime.datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + datetime.timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.datetime(2025, 12, 20, 12, 0, 0).astimezone())


@pytest.fixture
def local_storage() -> MemoryStorage:
    return MemoryStorage("local")


@pytest.fixture
def synced_storage() -> MemoryStorage:
    return MemoryStorage("synced", quota_bytes=100 * 1024)
