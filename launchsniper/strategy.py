# launchsniper/strategy.py
import asyncio
import logging
import time
from typing import Awaitable, Dict, List, Optional, TypeVar

from .analyzer import OpportunityAnalyzer
from .chain import BalanceProvider, GasPriceSource
from .config import AppConfig
from .dedup import DecisionGuard
from .exceptions import TradingHalted
from .execution import ExecutionService
from .lifecycle import TradeManager
from .market_engine import PlatformClient
from .models import Opportunity, Token, Trade, TradeStatus, VerificationStatus
from .risk_engine import RiskEngine

T = TypeVar("T")

# Seconds an unverified or retired token stays ignored
IGNORE_TTL_SECONDS = 3600
# Look-ahead for the debug-level price outlook
PREDICTION_HORIZON_SECONDS = 60


class SniperStrategy:
    """
    Polling pipeline: new launches -> bonding curve snapshots -> scored
    opportunities -> risk gate -> sizing -> dedup -> execution.

    Every collaborator call is time-boxed, and one token's failure never
    stops the others.
    """
    def __init__(self, config: AppConfig, market: PlatformClient, analyzer: OpportunityAnalyzer,
                 risk: RiskEngine, balance: BalanceProvider, gas: GasPriceSource,
                 guard: DecisionGuard, trades: TradeManager, execution: ExecutionService,
                 logger: logging.Logger):
        self.cfg = config.sniper
        self.timeout = config.collaborator_timeout
        self.market = market
        self.analyzer = analyzer
        self.risk = risk
        self.balance = balance
        self.gas = gas
        self.guard = guard
        self.trades = trades
        self.execution = execution
        self.logger = logger

        self.monitored: Dict[str, Token] = {}
        self._ignored: Dict[str, float] = {}
        self.last_status = "Waiting for launches..."

    async def _bounded(self, aw: Awaitable[T], what: str) -> Optional[T]:
        """Awaits a collaborator call; timeouts and errors read as absent data."""
        try:
            return await asyncio.wait_for(aw, self.timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"⏱️ Timed out: {what}")
        except Exception as e:
            self.logger.error(f"Collaborator error ({what}): {e}")
        return None

    # --- discovery ---

    async def poll_new_tokens(self):
        self._expire_ignored()
        tokens = await self._bounded(self.market.list_new_tokens(), "list new tokens")
        for token in tokens or []:
            key = token.address.lower()
            if key in self.monitored or key in self._ignored:
                continue
            verified = await self._bounded(self.market.verify(token.address), f"verify {token.symbol}")
            if verified is None:
                # Try again on the next poll
                token.verification = VerificationStatus.UNKNOWN
                continue
            if not verified:
                token.verification = VerificationStatus.UNVERIFIED
                self._ignored[key] = time.time()
                self.logger.info(f"🚫 Ignoring unverified token {token.symbol} ({token.address})")
                continue
            token.verification = VerificationStatus.VERIFIED
            if not token.bonding_curve_address:
                await self._fill_details(token)
            self.monitored[key] = token
            wait = token.launch_time + self.cfg.fair_launch_delay - time.time()
            when = f"in {wait:.1f}s" if wait > 0 else "now"
            self.logger.info(f"🆕 Monitoring {token.symbol} ({token.address}) | Eligible {when}")

    async def _fill_details(self, token: Token):
        details = await self._bounded(self.market.get_token(token.address), f"token details {token.symbol}")
        if details is not None and details.bonding_curve_address:
            token.bonding_curve_address = details.bonding_curve_address

    def _expire_ignored(self, now: Optional[float] = None):
        cutoff = (now or time.time()) - IGNORE_TTL_SECONDS
        for key in [k for k, seen in self._ignored.items() if seen < cutoff]:
            del self._ignored[key]

    def retire(self, token: Token):
        """Stops polling a token; it stays ignored by discovery for a while."""
        key = token.address.lower()
        if self.monitored.pop(key, None) is not None:
            self._ignored[key] = time.time()
            self.logger.info(f"🏁 {token.symbol} bonding curve past threshold, no longer monitored")

    def is_eligible(self, token: Token, now: Optional[float] = None) -> bool:
        """Launched, past the fair-launch delay, and not already being traded."""
        if token.launched_for(now) < self.cfg.fair_launch_delay:
            return False
        return not self.guard.is_busy(token.address)

    # --- evaluation ---

    async def poll_bonding_curves(self):
        now = time.time()
        tokens = [t for t in self.monitored.values() if self.is_eligible(t, now)]
        if not tokens:
            return
        results = await asyncio.gather(*(self.evaluate_token(t) for t in tokens), return_exceptions=True)
        for token, res in zip(tokens, results):
            if isinstance(res, Exception):
                self.logger.error(f"Pipeline error for {token.symbol}: {res}")

    async def evaluate_token(self, token: Token) -> Optional[Trade]:
        snapshot = await self._bounded(
            self.market.get_bonding_curve_snapshot(token.address), f"bonding curve {token.symbol}"
        )
        if snapshot is None:
            return None
        if snapshot.progress > self.cfg.bonding_curve_threshold:
            # Progress only grows until migration
            self.retire(token)
            return None
        gas_price = await self._bounded(self.gas.current_gas_price(), "gas price")
        opp = self.analyzer.analyze(token, snapshot, gas_price)
        if opp is None:
            return None
        if self.logger.isEnabledFor(logging.DEBUG):
            outlook = self.analyzer.predict(token, snapshot, PREDICTION_HORIZON_SECONDS)
            eta = f"{outlook.time_to_target:.0f}s" if outlook.reachable else "never"
            self.logger.debug(
                f"{token.symbol}: price {opp.current_price:.10f} | progress {opp.bonding_curve_progress:.2f} | "
                f"risk {opp.risk_score:.2f} | {opp.recommendation.value} | "
                f"covers gas: {opp.is_profitable} | target ETA {eta} (p={outlook.probability:.2f})"
            )
        return await self.handle_opportunity(opp)

    async def handle_opportunity(self, opp: Opportunity) -> Optional[Trade]:
        """
        Risk gate, sizing and execution for one opportunity. Returns the trade
        if one was created.
        """
        verdict = self.risk.evaluate(opp)
        if not verdict.accepted:
            self.last_status = f"[yellow]Rejected {opp.token.symbol}: {verdict.reasons[0]}[/yellow]"
            return None

        address = opp.token.address
        if not self.guard.try_acquire(address):
            self.logger.debug(f"Dropping {opp.token.symbol}: decision already in flight")
            return None

        trade = None
        try:
            balance = await self._bounded(self.balance.available_balance(), "wallet balance")
            amount = self.risk.size_position(opp, balance)
            if amount <= 0:
                self.last_status = f"[red]NO FUNDS: {opp.token.symbol}[/red]"
                return None

            self.logger.info(
                f"✨ FOUND: {opp.token.symbol} | Profit est: {opp.expected_profit:.4f} | "
                f"Risk: {opp.risk_score:.2f} | Conf: {opp.confidence:.2f} | Amt: {amount:.6f}"
            )
            trade = self.trades.create(opp, amount)
            self.last_status = f"ATTEMPT: Snipe {opp.token.symbol} @ {opp.current_price:.10f}"
            await self.execution.execute_entry(trade)
            return trade
        except TradingHalted as e:
            self.logger.warning(f"⛔ {e}")
            return None
        finally:
            if trade is not None and trade.status == TradeStatus.ACTIVE:
                self.guard.promote(address)
            else:
                self.guard.release(address)

    # --- exits ---

    async def price_of(self, address: str) -> Optional[float]:
        snapshot = await self._bounded(self.market.get_bonding_curve_snapshot(address), f"price {address}")
        return snapshot.current_price if snapshot else None

    async def monitor_exits(self):
        await self.trades.check_exits(self.price_of)

    @property
    def monitored_tokens(self) -> List[Token]:
        return list(self.monitored.values())
