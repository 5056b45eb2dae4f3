"""
Market Data Service - Run the live candle + indicator engine for one selection

Usage:
    python services/market_data/main.py --symbol BTCUSDT --interval 1m

- Fetches history, seeds the series, computes SMA/RSI
- Streams live klines and keeps everything reconciled
- Logs every newly closed candle with its indicator values
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from config.settings import get_settings
from core.exceptions import DataUnavailable
from core.models.market_data import Interval, MarketSnapshot
from services.market_data.coordinator import MarketDataCoordinator

settings = get_settings()

# Configure logging
os.makedirs(settings.LOG_DIR, exist_ok=True)

_fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_console = logging.StreamHandler(sys.stdout)
_console.setLevel(settings.LOG_LEVEL)
_console.setFormatter(logging.Formatter(_fmt))

_file = RotatingFileHandler(
    os.path.join(settings.LOG_DIR, "market_data_errors.log"),
    maxBytes=5 * 1024 * 1024,  # 5MB
    backupCount=3,
)
_file.setLevel(logging.ERROR)
_file.setFormatter(logging.Formatter(_fmt))

logging.basicConfig(level=settings.LOG_LEVEL, handlers=[_console, _file])
logger = logging.getLogger(__name__)


class MarketDataService:
    """
    Market Data Service - one coordinator, one selection, until interrupted
    """

    def __init__(self, symbol: str, interval: str):
        self.symbol = symbol
        self.interval = interval
        self.running = False

        self.coordinator = MarketDataCoordinator(settings=settings)
        self.coordinator.on_snapshot(self.log_snapshot)

        self._last_closed_time: int | None = None
        self._last_state = None

    async def log_snapshot(self, snapshot: MarketSnapshot) -> None:
        """Log connection changes and newly closed candles"""
        if snapshot.connection_state != self._last_state:
            self._last_state = snapshot.connection_state
            logger.info(f"Connection: {snapshot.connection_state.value}")

        closed = [c for c in snapshot.candles if c.closed]
        if not closed or closed[-1].open_time == self._last_closed_time:
            logger.debug(f"{snapshot.symbol} last price: {snapshot.last_price}")
            return

        candle = closed[-1]
        self._last_closed_time = candle.open_time

        values = []
        for name, points in snapshot.indicators.items():
            if points and points[-1].timestamp == candle.open_time:
                values.append(f"{name}={points[-1].value:.2f}")
            else:
                values.append(f"{name}=n/a")

        logger.info(
            f"📊 {snapshot.symbol} {snapshot.interval.value} {candle.timestamp.isoformat()} "
            f"O={candle.open} H={candle.high} L={candle.low} C={candle.close} V={candle.volume} "
            f"| {' '.join(values)}"
        )

    async def start(self):
        """Select the instrument and run until stopped"""
        logger.info("=" * 60)
        logger.info("🚀 Starting Market Data Service")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Exchange: {settings.EXCHANGE}")
        logger.info(f"Selection: {self.symbol} {self.interval}")
        logger.info("=" * 60)

        self.running = True

        try:
            await self.coordinator.select(self.symbol, self.interval)

            while self.running:
                await asyncio.sleep(1)

        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
        except DataUnavailable as e:
            logger.error(f"✗ {e}")
        except Exception as e:
            logger.error(f"Error in market data service: {e}", exc_info=True)
        finally:
            await self.stop()

    async def stop(self):
        """Graceful shutdown"""
        logger.info("Stopping Market Data Service...")
        self.running = False

        await self.coordinator.close()

        logger.info("Market Data Service stopped")


def signal_handler(service):
    """Handle SIGINT/SIGTERM"""

    def handler(signum, frame):
        logger.info(f"Received signal {signum}")
        service.running = False

    return handler


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live candles + indicators for one instrument")
    parser.add_argument("--symbol", default=settings.DEFAULT_SYMBOL, help="Exchange symbol, e.g. BTCUSDT")
    parser.add_argument(
        "--interval",
        default=settings.DEFAULT_INTERVAL,
        choices=[i.value for i in Interval],
        help="Candle interval",
    )
    return parser.parse_args(argv)


async def main():
    """Main entry point"""
    args = parse_args()
    service = MarketDataService(args.symbol, args.interval)

    signal.signal(signal.SIGINT, signal_handler(service))
    signal.signal(signal.SIGTERM, signal_handler(service))

    await service.start()


def run():
    """Console script entry point"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Goodbye!")


if __name__ == "__main__":
    run()
