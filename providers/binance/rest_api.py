"""
Binance REST API client for historical klines (seed + backfill)

Uses ccxt library for unified exchange interface.
"""

import logging

import ccxt.async_support as ccxt

from config.settings import Settings, get_settings
from core.interfaces.market_data import BaseHistoricalDataSource
from core.models.market_data import Candle, Interval

logger = logging.getLogger(__name__)


class BinanceRestAPI(BaseHistoricalDataSource):
    """
    Binance REST API client for authoritative closed candles

    Uses ccxt library for:
    - Unified interface across exchanges
    - Built-in rate limiting
    - Symbol mapping (BTCUSDT → BTC/USDT)

    The last kline Binance returns is usually still in progress; it is
    dropped so only closed candles reach the series. "In progress" is judged
    against the exchange clock, not the local one.
    """

    def __init__(self, settings: Settings | None = None):
        super().__init__(exchange_name="binance")
        settings = settings or get_settings()

        self.client = ccxt.binance(
            {
                "enableRateLimit": settings.REST_API_ENABLE_RATE_LIMIT,
                "timeout": settings.REST_API_TIMEOUT_MS,
            }
        )
        self._symbols: dict[str, str] = {}
        # Local clock minus Binance server clock (ms), measured on first fetch
        self._time_difference: int | None = None
        logger.info("BinanceRestAPI initialized")

    async def fetch_candles(
        self,
        symbol: str,
        interval: Interval,
        limit: int = 500,
        start_time: int | None = None,
    ) -> list[Candle]:
        """
        Fetch closed klines from Binance REST API

        Args:
            symbol: Exchange symbol (e.g., "BTCUSDT")
            interval: Candle interval
            limit: Max candles per request (default 500, max 1000)
            start_time: First open time (ms). None = most recent `limit` candles.

        Returns:
            List of closed Candle objects, oldest first
        """
        self.validate_limit(limit)

        try:
            market_symbol = await self._market_symbol(symbol)
            now_ms = await self._server_time()
            ohlcv = await self.client.fetch_ohlcv(
                market_symbol, interval.value, since=start_time, limit=limit
            )

        except Exception as e:
            logger.error(f"Failed to fetch klines for {symbol} {interval.value}: {e}")
            raise

        candles = []
        for row in ohlcv:
            timestamp_ms, open_, high, low, close, volume = row[:6]

            # Bucket not finished yet
            if timestamp_ms + interval.step_ms > now_ms:
                break

            candles.append(
                Candle(
                    open_time=int(timestamp_ms),
                    open=float(open_),
                    high=float(high),
                    low=float(low),
                    close=float(close),
                    volume=float(volume or 0),
                )
            )

        logger.info(
            f"Fetched {len(candles)} klines for {symbol} {interval.value}"
            + (f" from {start_time}" if start_time is not None else "")
        )
        return candles

    async def _server_time(self) -> int:
        """Current Binance server time in ms"""
        if self._time_difference is None:
            await self.client.load_time_difference()
            self._time_difference = int(self.client.options.get("timeDifference", 0))
        return self.client.milliseconds() - self._time_difference

    async def _market_symbol(self, symbol: str) -> str:
        """Map exchange id (BTCUSDT) to ccxt unified symbol (BTC/USDT)"""
        if symbol not in self._symbols:
            await self.client.load_markets()
            self._symbols[symbol] = self.client.market(symbol)["symbol"]
        return self._symbols[symbol]

    async def close(self) -> None:
        """Close ccxt client"""
        await self.client.close()
        logger.info("BinanceRestAPI closed")
