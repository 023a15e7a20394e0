import pytest

from cached_json import CacheConfig, CachedJSON
from cached_json.monitoring import initialize_monitor

from sample_models import build_registry


@pytest.fixture(autouse=True)
def monitor():
    """Fresh global monitor per test."""
    return initialize_monitor()


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def engine(registry):
    return CachedJSON(registry, CacheConfig())
