"""
pytest configuration for order_relay tests.

Adds src directory to Python path for imports and clears Kafka settings
inherited from the shell.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from order_relay.config import ENV_VARS  # noqa: E402
from order_relay.common.logging import clear_log_context  # noqa: E402


@pytest.fixture(autouse=True)
def clean_kafka_env(monkeypatch):
    """Keep KAFKA_* variables from the developer's shell out of tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_log_context():
    yield
    clear_log_context()
