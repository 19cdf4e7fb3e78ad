"""
Shared pytest fixtures for all tests.
"""

import pytest
from loguru import logger


# ============================================================
# Logging Fixtures
# ============================================================


@pytest.fixture
def log_messages():
    """Capture loguru records as (level, module, message) tuples."""
    records: list[tuple[str, str, str]] = []

    def sink(message):
        record = message.record
        records.append((record["level"].name, record["extra"].get("module", ""), record["message"]))

    handler_id = logger.add(sink, level="DEBUG")
    yield records
    logger.remove(handler_id)


# ============================================================
# Settings Fixtures
# ============================================================


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; tests must not leak overrides."""
    from config.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
