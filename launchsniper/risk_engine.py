# launchsniper/risk_engine.py
from dataclasses import dataclass, field
from typing import List, Optional
import logging

from .config import SniperConfig
from .models import Opportunity

MAX_RISK_SCORE = 0.8
MAX_BALANCE_FRACTION = 0.1


@dataclass(frozen=True)
class RiskVerdict:
    accepted: bool
    reasons: List[str] = field(default_factory=list)


def check_opportunity(opp: Opportunity, cfg: SniperConfig) -> List[str]:
    """
    Evaluates every rule independently and returns all violations.
    An empty list means the opportunity is accepted.
    """
    reasons = []
    if opp.liquidity < cfg.min_liquidity:
        reasons.append(f"liquidity {opp.liquidity:.2f} < min {cfg.min_liquidity:.2f}")
    if opp.slippage > cfg.max_slippage:
        reasons.append(f"slippage {opp.slippage:.4f} > max {cfg.max_slippage:.4f}")
    if opp.expected_profit < cfg.profit_threshold:
        reasons.append(f"expected profit {opp.expected_profit:.4f} < threshold {cfg.profit_threshold:.4f}")
    if opp.risk_score > MAX_RISK_SCORE:
        reasons.append(f"risk score {opp.risk_score:.3f} > {MAX_RISK_SCORE}")
    if opp.bonding_curve_progress > cfg.bonding_curve_threshold:
        reasons.append(
            f"bonding curve progress {opp.bonding_curve_progress:.3f} > {cfg.bonding_curve_threshold:.3f}"
        )
    return reasons


def accept(opp: Opportunity, cfg: SniperConfig) -> bool:
    return not check_opportunity(opp, cfg)


class RiskEngine:
    """
    Risk Gate and Position Sizer.
    Separates the decision 'Can we trade?' from finding the trade; a rejection
    is an expected outcome, logged for observability only.
    """
    def __init__(self, config: SniperConfig, logger: logging.Logger):
        self.cfg = config
        self.logger = logger
        self.rejections = 0

    def evaluate(self, opp: Opportunity) -> RiskVerdict:
        reasons = check_opportunity(opp, self.cfg)
        if reasons:
            self.rejections += 1
            self.logger.info(f"⛔ REJECTED: {opp.token.symbol} | " + " | ".join(reasons))
            return RiskVerdict(False, reasons)
        return RiskVerdict(True)

    def size_position(self, opp: Opportunity, available_balance: Optional[float]) -> float:
        """
        min(max_position * (1 - risk), 10% of balance). Fails closed (0) when the
        balance is unknown.
        """
        if available_balance is None or available_balance <= 0:
            self.logger.warning(f"⚠️ {opp.token.symbol}: balance unavailable, not sizing")
            return 0.0
        risk_adjusted = self.cfg.max_position_size * (1 - opp.risk_score)
        amount = min(risk_adjusted, available_balance * MAX_BALANCE_FRACTION)
        return max(amount, 0.0)
