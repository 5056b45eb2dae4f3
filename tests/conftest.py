"""
Pytest configuration for test suite

Markers:
- unit: Fast unit tests (no external dependencies)
- binance: Tests that fetch from Binance API (requires internet)
- slow: Slow-running tests (>10 seconds)
"""

import pytest

from config.settings import Settings, reset_settings

TEST_CONFIG = """
market_data:
  exchange: binance
  default_symbol: BTCUSDT
  default_interval: 1m
  history_limit: 100
  fetch:
    max_attempts: 3
    retry_delay_seconds: 0
  reconnect:
    base_delay_seconds: 0.01
    max_delay_seconds: 0.05
  backfill_limit: 1000
  gaps:
    enable_filling: true
    max_gap_ratio: 0.1

indicators:
  - name: sma20
    type: sma
    params:
      period: 20
  - name: sma50
    type: sma
    params:
      period: 50
  - name: rsi14
    type: rsi
    params:
      period: 14
"""


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: Fast unit tests (no dependencies)")
    config.addinivalue_line(
        "markers", "binance: Tests using Binance API (requires internet)"
    )
    config.addinivalue_line("markers", "slow: Slow tests (>10 seconds)")


@pytest.fixture
def engine_settings(tmp_path):
    """Settings backed by a fast test config (no retry / reconnect waits)"""
    path = tmp_path / "market_data.yaml"
    path.write_text(TEST_CONFIG)
    return Settings(MARKET_DATA_CONFIG_PATH=str(path))


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Never leak the settings singleton between tests"""
    reset_settings()
    yield
    reset_settings()
