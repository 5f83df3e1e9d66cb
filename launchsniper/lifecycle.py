# launchsniper/lifecycle.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set

from .chain import TxHandle
from .config import SniperConfig
from .dedup import DecisionGuard
from .events import EventBus, FailureStage
from .exceptions import TradingHalted
from .execution import ExecutionResult, ExecutionService
from .models import ExitReason, Opportunity, Trade, TradeStatus

PriceLookup = Callable[[str], Awaitable[Optional[float]]]

# Closed trades kept in the registry for the dashboard and lookups
CLOSED_TRADE_HISTORY = 500


@dataclass(frozen=True)
class PendingExit:
    """A sell that reached the chain but has no receipt yet."""
    handle: TxHandle
    price: float
    reason: ExitReason


class TradeManager:
    """
    Owns the trade registry (id -> Trade) once a snipe has been created.

    Runs stop-loss / take-profit exits and the global stop_all halt, and keeps
    the realized profit accumulator.
    """
    def __init__(self, config: SniperConfig, execution: ExecutionService, guard: DecisionGuard,
                 bus: EventBus, logger: logging.Logger):
        self.cfg = config
        self.execution = execution
        self.guard = guard
        self.bus = bus
        self.logger = logger
        self._trades: Dict[str, Trade] = {}
        self._exiting: Set[str] = set()
        self._pending_exits: Dict[str, PendingExit] = {}
        self._exit_attempts: Dict[str, int] = {}
        self._total_profit = 0.0
        self.halted = False

    # --- registry ---

    def create(self, opp: Opportunity, amount: float) -> Trade:
        """
        Registers a PENDING trade. Callers hold the token's dedup mark.
        """
        if self.halted:
            raise TradingHalted("Trading is halted, not creating trade", token=opp.token.address)
        self._prune_closed()
        trade = Trade.open(opp, amount, self.cfg.stop_loss_percentage, self.cfg.take_profit_percentage)
        self._trades[trade.id] = trade
        self.logger.info(
            f"🎯 New snipe {trade.id} | {opp.token.symbol} | Entry: {trade.entry_price:.10f} | "
            f"SL: {trade.stop_loss:.10f} | TP: {trade.take_profit:.10f} | Amt: {amount:.6f}"
        )
        return trade

    def _prune_closed(self):
        closed = [
            tid for tid, t in self._trades.items()
            if not t.is_open and tid not in self._pending_exits
        ]
        for tid in closed[:max(0, len(closed) - CLOSED_TRADE_HISTORY)]:
            del self._trades[tid]

    def get(self, trade_id: str) -> Optional[Trade]:
        return self._trades.get(trade_id)

    @property
    def trades(self) -> List[Trade]:
        return list(self._trades.values())

    def active_trades(self) -> List[Trade]:
        return [t for t in self._trades.values() if t.status == TradeStatus.ACTIVE]

    def open_trade_for(self, address: str) -> Optional[Trade]:
        key = address.lower()
        for trade in self._trades.values():
            if trade.is_open and trade.token_address.lower() == key:
                return trade
        return None

    # --- halt ---

    def stop_all(self) -> List[Trade]:
        """
        Marks every ACTIVE trade STOPPED and refuses new trades.

        PENDING trades are left to the Execution Engine: a submitted
        transaction cannot be unsent.
        """
        self.halted = True
        self.logger.info("🛑 Stopping all active snipes...")
        stopped = []
        for trade in self.active_trades():
            trade.transition(TradeStatus.STOPPED)
            self.guard.release(trade.token_address)
            stopped.append(trade)
            self.logger.info(f"🛑 Stopped snipe {trade.id}")
        pending = [t for t in self._trades.values() if t.status == TradeStatus.PENDING]
        if pending:
            self.logger.warning(f"⚠️ {len(pending)} pending snipe(s) still in flight; they may still execute")
        return stopped

    def resume(self):
        self.halted = False

    # --- profit ---

    @property
    def total_profit(self) -> float:
        return self._total_profit

    def update_total_profit(self, profit: float):
        self._total_profit += profit
        self.bus.profit_updated(self._total_profit)

    # --- exits ---

    def exit_signal(self, trade: Trade, price: float) -> Optional[ExitReason]:
        if price >= trade.take_profit:
            return ExitReason.TAKE_PROFIT
        if price <= trade.stop_loss:
            return ExitReason.STOP_LOSS
        return None

    def pending_exit(self, trade_id: str) -> Optional[PendingExit]:
        return self._pending_exits.get(trade_id)

    async def check_exits(self, price_of: PriceLookup):
        """
        One pass of exit monitoring over every ACTIVE trade, plus any trade
        whose sell is still awaiting its receipt. Per-trade errors are isolated.
        """
        candidates = [
            t for t in self._trades.values()
            if (t.status == TradeStatus.ACTIVE or t.id in self._pending_exits) and t.id not in self._exiting
        ]
        if not candidates:
            return
        results = await asyncio.gather(
            *(self._check_trade(t, price_of) for t in candidates), return_exceptions=True
        )
        for trade, res in zip(candidates, results):
            if isinstance(res, Exception):
                self.logger.error(f"Exit check failed for {trade.id}: {res}")

    async def _check_trade(self, trade: Trade, price_of: PriceLookup):
        pending = self._pending_exits.get(trade.id)
        if pending is not None:
            # One sell in flight per trade: follow its receipt, never resend
            await self._exclusive(trade, self._recheck_exit(trade, pending))
            return

        price = await price_of(trade.token_address)
        if price is None or price <= 0:
            return
        reason = self.exit_signal(trade, price)
        if reason is None:
            return
        # Re-check: the trade may have been exited or halted while pricing
        if trade.status != TradeStatus.ACTIVE:
            return
        await self._exclusive(trade, self._exit(trade, price, reason))

    async def _exclusive(self, trade: Trade, work: Awaitable[None]):
        if trade.id in self._exiting:
            work.close()
            return
        self._exiting.add(trade.id)
        try:
            await work
        finally:
            self._exiting.discard(trade.id)

    async def _exit(self, trade: Trade, price: float, reason: ExitReason):
        self.logger.info(f"📉 {reason.value} hit for {trade.id} | Price: {price:.10f}")
        result = await self.execution.execute_exit(trade, price)
        if result.success:
            self._settle(trade, price, reason)
            return
        if not result.broadcast:
            # Nothing reached the chain; the next pass tries again
            return

        attempts = self._count_attempt(trade)
        if result.stage == FailureStage.CONFIRMATION_TIMEOUT:
            self._pending_exits[trade.id] = PendingExit(result.handle, price, reason)
            self.logger.warning(f"⏳ Exit of {trade.id} unconfirmed, watching {result.tx_hash} instead of resending")
            return
        self.logger.warning(f"↩️ Exit of {trade.id} reverted (attempt {attempts}/{self.cfg.max_exit_attempts})")
        if attempts >= self.cfg.max_exit_attempts:
            self._write_off(trade, result)

    async def _recheck_exit(self, trade: Trade, pending: PendingExit):
        result = await self.execution.confirm_exit(trade, pending.handle)
        if result.success:
            self._settle(trade, pending.price, pending.reason)
            return
        if result.stage == FailureStage.CONFIRMATION_TIMEOUT:
            if self._count_attempt(trade) >= self.cfg.max_exit_attempts:
                self._write_off(trade, result)
            return

        # Reverted: a fresh sell may go out on a later pass
        del self._pending_exits[trade.id]
        self.logger.warning(f"↩️ Exit of {trade.id} reverted | Tx: {pending.handle.tx_hash}")
        if self._exit_attempts.get(trade.id, 0) >= self.cfg.max_exit_attempts:
            self._write_off(trade, result)

    def _count_attempt(self, trade: Trade) -> int:
        attempts = self._exit_attempts.get(trade.id, 0) + 1
        self._exit_attempts[trade.id] = attempts
        return attempts

    def _forget_exit(self, trade: Trade):
        self._pending_exits.pop(trade.id, None)
        self._exit_attempts.pop(trade.id, None)

    def _write_off(self, trade: Trade, result: ExecutionResult):
        """
        Gives up on selling: the trade is STOPPED without booking PnL and its
        token is released. The position may still be held on-chain.
        """
        self.logger.error(
            f"🧯 Giving up on exiting {trade.id} after {self._exit_attempts.get(trade.id, 0)} sell attempt(s) "
            f"({result.stage.value if result.stage else 'unknown'}) | Last tx: {result.tx_hash} | Manual review needed"
        )
        if trade.status == TradeStatus.ACTIVE:
            trade.transition(TradeStatus.STOPPED)
        self.guard.release(trade.token_address)
        self._forget_exit(trade)

    def _settle(self, trade: Trade, price: float, reason: ExitReason):
        self._forget_exit(trade)
        pnl = trade.amount * (price - trade.entry_price) / trade.entry_price
        trade.exit_price = price
        trade.exit_reason = reason
        trade.realized_pnl = pnl

        if trade.status == TradeStatus.ACTIVE:
            trade.transition(
                TradeStatus.COMPLETED if reason == ExitReason.TAKE_PROFIT else TradeStatus.STOPPED
            )
        else:
            self.logger.warning(f"⚠️ {trade.id} was {trade.status.value} before its exit confirmed")
        self.guard.release(trade.token_address)

        self.update_total_profit(pnl)
        self.bus.trade_exited(trade, self._total_profit)
        self.logger.info(
            f"💰 Closed {trade.id} ({trade.status.value}) | PnL: {pnl:+.6f} | Total: {self._total_profit:+.6f}"
        )
