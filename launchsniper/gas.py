# launchsniper/gas.py
import logging
import statistics
from typing import Awaitable, Callable, List

from .chain import GasPriceSource

GWEI = 10 ** 9
HISTORY_SIZE = 100
CONGESTION_WINDOW = 10
DEFAULT_CONGESTION = 0.5


def gwei_to_wei(gwei: float) -> int:
    return int(gwei * GWEI)


def congestion_multiplier(congestion: float) -> float:
    if congestion > 0.8:
        return 1.5
    if congestion > 0.6:
        return 1.2
    if congestion < 0.3:
        return 0.9
    return 1.0


def apply_congestion(current_wei: int, congestion: float, floor_wei: int) -> int:
    optimal = int(current_wei * congestion_multiplier(congestion))
    return max(optimal, floor_wei)


def congestion_from_history(history_gwei: List[float]) -> float:
    """
    Volatility of the last samples as a congestion proxy, capped at 1.
    Too little history reads as medium congestion.
    """
    if len(history_gwei) < CONGESTION_WINDOW:
        return DEFAULT_CONGESTION
    recent = history_gwei[-CONGESTION_WINDOW:]
    avg = sum(recent) / len(recent)
    if avg <= 0:
        return DEFAULT_CONGESTION
    volatility = statistics.pstdev(recent) / avg
    return min(volatility * 2, 1.0)


class GasOptimizer(GasPriceSource):
    """
    Optimal gas price from the node's current price, bucketed by congestion.
    History is fed by the periodic sampling task (refresh_history).
    """
    def __init__(self, fetch_gas_price: Callable[[], Awaitable[int]], min_gas_price_wei: int,
                 logger: logging.Logger):
        self._fetch = fetch_gas_price
        self.min_gas_price_wei = min_gas_price_wei
        self.logger = logger
        self._history: List[float] = []

    async def current_gas_price(self) -> int:
        return int(await self._fetch())

    async def optimal_gas_price(self) -> int:
        current = await self.current_gas_price()
        congestion = congestion_from_history(self._history)
        optimal = apply_congestion(current, congestion, self.min_gas_price_wei)
        self.logger.info(f"⛽ Optimal gas price: {optimal / GWEI:.2f} gwei (congestion {congestion:.2f})")
        return optimal

    async def refresh_history(self):
        price = await self.current_gas_price()
        self.record(price)

    def record(self, price_wei: int):
        self._history.append(price_wei / GWEI)
        if len(self._history) > HISTORY_SIZE:
            self._history = self._history[-HISTORY_SIZE:]

    def gas_price_trend(self) -> str:
        if len(self._history) < 5:
            return "STABLE"
        recent = self._history[-5:]
        first_avg = sum(recent[:3]) / 3
        second_avg = sum(recent[2:]) / 3
        if first_avg <= 0:
            return "STABLE"
        change = (second_avg - first_avg) / first_avg
        if change > 0.05:
            return "INCREASING"
        if change < -0.05:
            return "DECREASING"
        return "STABLE"

    @property
    def history(self) -> List[float]:
        return list(self._history)

    @property
    def last_gwei(self) -> float:
        return self._history[-1] if self._history else 0.0
