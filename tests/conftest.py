# tests/conftest.py
import pytest

from msgbus.core import log
from msgbus.core import metrics
from msgbus.core.bus import MessageBus, set_default_bus
from msgbus.core.config import BusConfig


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_logging():
    # reads LOG_LEVEL / LOG_JSON / .env
    log.setup()
    yield


@pytest.fixture
def bus():
    """A fresh bus installed as the default for the duration of a test."""
    fresh = MessageBus(BusConfig())
    prev = set_default_bus(fresh)
    yield fresh
    set_default_bus(prev)


@pytest.fixture
def clean_metrics():
    metrics.reset()
    yield
    metrics.reset()
