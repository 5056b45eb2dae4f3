"""
Binance WebSocket kline stream for real-time candle updates

Handles:
- Kline stream subscription for one (symbol, interval)
- Envelope parsing to normalized CandleUpdate
- Skipping malformed / non-kline messages

Reconnect is NOT handled here: one instance is one connection attempt, and
LiveFeedReconciler creates a fresh instance per attempt.
"""

import json
import logging
from collections.abc import AsyncIterator

from websockets import connect

from core.exceptions import TransportLost
from core.interfaces.market_data import BaseCandleStream
from core.models.market_data import CandleUpdate, Interval

logger = logging.getLogger(__name__)


class BinanceKlineStream(BaseCandleStream):
    """
    Binance kline stream implementation

    WebSocket Documentation:
    https://binance-docs.github.io/apidocs/spot/en/#kline-candlestick-streams
    """

    BASE_URL = "wss://stream.binance.com:9443/ws"

    def __init__(self):
        super().__init__(exchange_name="binance")
        self.websocket = None
        self.url: str | None = None

    async def connect(self, symbol: str, interval: Interval) -> None:
        """
        Connect to Binance and subscribe to {symbol}@kline_{interval}

        Format: wss://stream.binance.com:9443/ws/btcusdt@kline_1m
        """
        self.url = f"{self.BASE_URL}/{symbol.lower()}@kline_{interval.value}"
        logger.info(f"Connecting to Binance kline stream: {symbol} {interval.value}")

        self.websocket = await connect(self.url)
        logger.info(f"✓ Connected to Binance WebSocket: {self.url}")

    async def updates(self) -> AsyncIterator[CandleUpdate]:
        """
        Yield normalized kline updates until the connection closes

        Raises:
            TransportLost: If called before connect()
        """
        if self.websocket is None:
            raise TransportLost("Binance kline stream not connected")

        async for message in self.websocket:
            try:
                data = json.loads(message)
                update = self._parse_kline(data)

            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"Error processing Binance message: {e}")
                continue

            if update is not None:
                yield update

    def _parse_kline(self, data: dict) -> CandleUpdate | None:
        """
        Parse Binance kline message to CandleUpdate

        Binance kline format:
        {
            "e": "kline",              // Event type
            "E": 1672515782136,        // Event time
            "s": "BTCUSDT",            // Symbol
            "k": {
                "t": 1672515780000,    // Kline start time
                "T": 1672515839999,    // Kline close time
                "i": "1m",             // Interval
                "o": "16500.00",       // Open price
                "h": "16510.00",       // High price
                "l": "16495.00",       // Low price
                "c": "16505.00",       // Close price
                "v": "12.5",           // Base asset volume
                "x": false             // Is this kline closed?
            }
        }

        Returns:
            CandleUpdate, or None for non-kline events
        """
        if data.get("e") != "kline":
            logger.debug(f"Unknown Binance event type: {data.get('e')}")
            return None

        k = data["k"]
        return CandleUpdate(
            open_time=int(k["t"]),
            open=float(k["o"]),
            high=float(k["h"]),
            low=float(k["l"]),
            close=float(k["c"]),
            volume=float(k["v"]),
            is_final=bool(k["x"]),
        )

    async def close(self) -> None:
        """Close WebSocket connection (safe to call twice)"""
        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            await websocket.close()
            logger.info("✓ Binance kline stream closed")
