# launchsniper/analyzer.py
import logging
import math
from typing import List, Optional

from .config import SniperConfig
from .models import (
    BondingCurveSnapshot, Opportunity, PricePrediction, Recommendation, Token,
)

MAX_SLIPPAGE_ESTIMATE = 0.05
LIQUIDITY_REFERENCE = 10000.0
WEI_PER_NATIVE = 10 ** 18


def estimate_slippage(trade_size: float, liquidity: float) -> float:
    if liquidity <= 0:
        return MAX_SLIPPAGE_ESTIMATE
    return min(trade_size / liquidity, MAX_SLIPPAGE_ESTIMATE)


def risk_score(progress: float, liquidity: float, price_impact: float) -> float:
    """
    Weighted composite: curve progress 30%, liquidity thinness 40%, price impact 30%.
    """
    score = 0.3 * progress
    score += 0.4 * max(0.0, (LIQUIDITY_REFERENCE - liquidity) / LIQUIDITY_REFERENCE)
    score += 0.3 * min(price_impact, 0.1)
    return min(max(score, 0.0), 1.0)


def recommend(expected_profit: float, risk: float) -> Recommendation:
    if expected_profit > 0.1 and risk < 0.5:
        return Recommendation.BUY
    if expected_profit > 0.05 and risk < 0.7:
        return Recommendation.HOLD
    if expected_profit < -0.05:
        return Recommendation.SELL
    return Recommendation.WAIT


def confidence(liquidity: float, risk: float) -> float:
    data_confidence = min(liquidity / LIQUIDITY_REFERENCE, 1.0)
    return (data_confidence + (1 - risk)) / 2


def price_from_progress(progress: float, base_price: float) -> float:
    """Bonding curve approximation: price = base * (1 + progress)^2."""
    return base_price * (1 + progress) ** 2


def time_to_target(current_price: float, target_price: float, progress_rate: float) -> float:
    """Seconds until target_price at the given progress rate, math.inf if never."""
    if progress_rate <= 0 or current_price <= 0:
        return math.inf
    progress_needed = math.sqrt(target_price / current_price) - 1
    return progress_needed / progress_rate


class OpportunityAnalyzer:
    """
    Turns a bonding curve snapshot plus the ambient gas price into a scored
    Opportunity. Never raises into the polling loop: bad input gives None.
    """
    def __init__(self, config: SniperConfig, logger: logging.Logger):
        self.cfg = config
        self.logger = logger

    def analyze(self, token: Token, snapshot: Optional[BondingCurveSnapshot],
                gas_price_wei: Optional[int]) -> Optional[Opportunity]:
        if snapshot is None or gas_price_wei is None:
            self.logger.debug(f"Skipping {token.symbol}: market data unavailable")
            return None
        if snapshot.current_price <= 0 or not math.isfinite(snapshot.current_price):
            self.logger.warning(f"⚠️ {token.symbol}: unusable price {snapshot.current_price}, skipping")
            return None

        current = snapshot.current_price
        target = current * self.cfg.target_multiplier
        slippage = estimate_slippage(self.cfg.reference_trade_size, snapshot.liquidity)
        gas_cost = gas_price_wei * self.cfg.gas_limit / WEI_PER_NATIVE
        expected_profit = self.cfg.reference_trade_size * (target - current) / current
        risk = risk_score(snapshot.progress, snapshot.liquidity, snapshot.price_impact)

        return Opportunity(
            token=token,
            current_price=current,
            target_price=target,
            bonding_curve_progress=snapshot.progress,
            liquidity=snapshot.liquidity,
            slippage=slippage,
            gas_cost=gas_cost,
            expected_profit=expected_profit,
            risk_score=risk,
            recommendation=recommend(expected_profit, risk),
            confidence=confidence(snapshot.liquidity, risk),
        )

    def predict(self, token: Token, snapshot: BondingCurveSnapshot,
                horizon_seconds: float) -> PricePrediction:
        """
        Linear progress extrapolation using the average rate since launch.
        """
        elapsed = snapshot.timestamp - token.launch_time
        rate = snapshot.progress / elapsed if elapsed > 0 else 0.0
        predicted_progress = min(1.0, snapshot.progress + rate * horizon_seconds)

        return PricePrediction(
            predicted_price=price_from_progress(predicted_progress, self.cfg.base_price),
            time_to_target=time_to_target(
                snapshot.current_price, snapshot.current_price * self.cfg.target_multiplier, rate
            ),
            probability=self._probability(snapshot),
            factors=tuple(self._factors(snapshot)),
        )

    @staticmethod
    def _probability(snapshot: BondingCurveSnapshot) -> float:
        liquidity_factor = min(snapshot.liquidity / 5000, 1.0)
        progress_factor = 1 - snapshot.progress
        volume_factor = min(snapshot.volume_24h / 1000, 1.0)
        return (liquidity_factor + progress_factor + volume_factor) / 3

    @staticmethod
    def _factors(snapshot: BondingCurveSnapshot) -> List[str]:
        factors = []
        if snapshot.liquidity < 1000:
            factors.append("Low liquidity")
        if snapshot.progress > 0.8:
            factors.append("Advanced bonding curve")
        if snapshot.price_impact > 0.05:
            factors.append("High price impact")
        if snapshot.volume_24h > 1000:
            factors.append("High volume")
        return factors

