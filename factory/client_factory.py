"""
Client factory - Auto-create exchange clients based on configuration

Dependency injection pattern for exchange-agnostic code
"""

import logging

from config.settings import Settings, get_settings
from core.interfaces.market_data import BaseCandleStream, BaseHistoricalDataSource

logger = logging.getLogger(__name__)

SUPPORTED_EXCHANGES = ["binance"]


def create_historical_source(settings: Settings | None = None) -> BaseHistoricalDataSource:
    """
    Create historical candle source based on EXCHANGE config

    Returns:
        BaseHistoricalDataSource: BinanceRestAPI (ccxt)

    Examples:
        >>> # market_data.yaml: exchange: binance
        >>> history = create_historical_source()  # Returns BinanceRestAPI
        >>> candles = await history.fetch_candles("BTCUSDT", Interval.M1, limit=500)
        >>> await history.close()

    Raises:
        ValueError: If the exchange is not supported
    """
    settings = settings or get_settings()
    exchange = settings.EXCHANGE.lower()

    if exchange == "binance":
        from providers.binance.rest_api import BinanceRestAPI

        logger.info("✓ Creating BinanceRestAPI")
        return BinanceRestAPI(settings)

    raise ValueError(
        f"Unsupported exchange: {exchange}. Supported: {', '.join(SUPPORTED_EXCHANGES)}"
    )


def create_candle_stream(settings: Settings | None = None) -> BaseCandleStream:
    """
    Create a live candle transport based on EXCHANGE config

    Called once per connection attempt; every handle is single-use.

    Returns:
        BaseCandleStream: BinanceKlineStream (websockets)

    Raises:
        ValueError: If the exchange is not supported
    """
    settings = settings or get_settings()
    exchange = settings.EXCHANGE.lower()

    if exchange == "binance":
        from providers.binance.websocket import BinanceKlineStream

        logger.debug("Creating BinanceKlineStream")
        return BinanceKlineStream()

    raise ValueError(
        f"Unsupported exchange: {exchange}. Supported: {', '.join(SUPPORTED_EXCHANGES)}"
    )
