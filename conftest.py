"""
ZoneSentinel - pytest Configuration

Shared fixtures and configuration for all tests.
"""

import pytest
import sys
import os
from datetime import datetime, timezone

import fakeredis

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires external services)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested."""
    if not config.getoption("--run-integration", default=False):
        skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_integration)


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="run integration tests that require a live Redis"
    )


# =============================================================================
# CELLS AND TIME
# =============================================================================

# Structurally valid resolution-6 cells (base cell 21)
CELL_A = "862a1072fffffff"
CELL_B = "862a10707ffffff"
CELL_C = "862a1070fffffff"
CELL_D = "862a10717ffffff"

FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def cell_ids():
    return [CELL_A, CELL_B, CELL_C, CELL_D]


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def clock():
    """Frozen clock for deterministic scoring."""
    return lambda: FIXED_NOW


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def fake_redis():
    """Isolated in-memory async Redis."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def store(fake_redis):
    from zonesentinel.core.store import RedisRiskZoneStore
    return RedisRiskZoneStore(client=fake_redis)


@pytest.fixture
def engine(store, clock):
    from zonesentinel.core.scoring import RiskZoneScoreEngine
    return RiskZoneScoreEngine(store, clock=clock)


# =============================================================================
# CONFIGURATION FIXTURES
# =============================================================================

@pytest.fixture
def test_config():
    """Create a test configuration."""
    from zonesentinel.config import ZoneSentinelConfig, Environment

    return ZoneSentinelConfig(
        environment=Environment.DEVELOPMENT,
    )


@pytest.fixture(autouse=True)
def reset_config_fixture():
    """Reset global configuration before each test."""
    from zonesentinel.config import reset_config
    reset_config()
    yield
    reset_config()


@pytest.fixture
def restore_logging():
    """Undo setup_logging() changes to the root logger and structlog."""
    import logging
    import structlog

    root = logging.getLogger()
    before, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    for handler in before:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()
