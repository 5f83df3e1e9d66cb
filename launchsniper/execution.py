# launchsniper/execution.py
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .chain import GasPriceSource, TransactionProtector, TransactionSubmitter, TxHandle, TxRequest
from .config import SniperConfig
from .events import EventBus, FailureStage
from .exceptions import SubmissionError
from .gas import GWEI
from .models import Trade, TradeSide, TradeStatus

WEI_PER_NATIVE = 10 ** 18


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    stage: Optional[FailureStage] = None
    tx_hash: Optional[str] = None
    cause: Optional[BaseException] = None
    handle: Optional[TxHandle] = None

    @property
    def broadcast(self) -> bool:
        return self.tx_hash is not None


class ExecutionService:
    """
    Places the protected on-chain transactions for entries and exits.

    Entry state machine: PENDING -> SUBMITTED -> ACTIVE | STOPPED.
    Gas pricing and front-running protection are collaborator concerns.
    Never retries: a failed snipe needs a fresh opportunity.
    """
    def __init__(self, config: SniperConfig, gas: GasPriceSource, protector: TransactionProtector,
                 submitter: TransactionSubmitter, bus: EventBus, logger: logging.Logger,
                 timeout: float, confirmation_timeout: Optional[float] = None, dry_run: bool = False):
        self.cfg = config
        self.gas = gas
        self.protector = protector
        self.submitter = submitter
        self.bus = bus
        self.logger = logger
        self.timeout = timeout
        self.confirmation_timeout = confirmation_timeout if confirmation_timeout is not None else timeout
        self.dry_run = dry_run

    async def execute_entry(self, trade: Trade) -> ExecutionResult:
        """
        Buys into the trade's token. The trade ends ACTIVE on a confirmed
        receipt, STOPPED otherwise.
        """
        self.logger.info(f"🚀 Executing snipe {trade.id} | {trade.token.symbol} | Amt: {trade.amount:.6f}")
        result = await self._run(trade, TradeSide.BUY, trade.entry_price)

        if result.success:
            trade.transition(TradeStatus.ACTIVE)
            trade.entry_tx_hash = result.tx_hash
            self.logger.info(f"✅ Snipe {trade.id} executed | Tx: {result.tx_hash}")
            self.bus.snipe_executed(trade)
            return result

        trade.transition(TradeStatus.STOPPED)
        trade.entry_tx_hash = result.tx_hash
        if result.stage == FailureStage.REVERTED:
            self.logger.error(f"❌ Snipe {trade.id} failed on-chain | Tx: {result.tx_hash}")
            self.bus.snipe_failed(trade)
        else:
            self.logger.error(f"❌ Error executing snipe {trade.id} ({result.stage.value}): {result.cause}")
            self.bus.snipe_error(trade, result.cause, result.stage)
        return result

    async def execute_exit(self, trade: Trade, price: float) -> ExecutionResult:
        """
        Sells the position through the same contract as the entry. Status
        changes are left to the TradeManager.
        """
        self.logger.info(f"🏳️ Exiting {trade.id} | {trade.token.symbol} @ {price:.10f}")
        result = await self._run(trade, TradeSide.SELL, price)
        if result.success:
            trade.exit_tx_hash = result.tx_hash
        else:
            self.logger.error(f"❌ Exit of {trade.id} failed ({result.stage.value}): {result.cause}")
        return result

    async def confirm_exit(self, trade: Trade, handle: TxHandle) -> ExecutionResult:
        """
        Checks the receipt of an exit that was already broadcast. Never
        submits a new transaction.
        """
        self.logger.info(f"🔎 Re-checking exit of {trade.id} | Tx: {handle.tx_hash}")
        result = await self._confirm(handle)
        if result.success:
            trade.exit_tx_hash = result.tx_hash
        return result

    def build_request(self, trade: Trade, side: TradeSide, price: float, gas_price_wei: int) -> TxRequest:
        target = trade.token.bonding_curve_address or trade.token.address
        if side == TradeSide.BUY:
            value = int(trade.amount * WEI_PER_NATIVE)
            return TxRequest(
                side=side, to=target, value_wei=value, token_amount_wei=0,
                gas_price_wei=gas_price_wei, gas_limit=self.cfg.gas_limit,
                expected_out_wei=int(trade.amount / price * WEI_PER_NATIVE) if price > 0 else 0,
            )
        token_amount = int(trade.quantity * WEI_PER_NATIVE)
        return TxRequest(
            side=side, to=target, value_wei=0, token_amount_wei=token_amount,
            gas_price_wei=gas_price_wei, gas_limit=self.cfg.gas_limit,
            expected_out_wei=int(trade.quantity * price * WEI_PER_NATIVE),
        )

    async def _run(self, trade: Trade, side: TradeSide, price: float) -> ExecutionResult:
        # 1. Everything up to and including submit is "before broadcast"
        try:
            gas_price = await asyncio.wait_for(self.gas.optimal_gas_price(), self.timeout)
            cap = int(self.cfg.max_gas_price * GWEI)
            if gas_price > cap:
                raise SubmissionError(
                    "gas price above cap",
                    gas_gwei=round(gas_price / GWEI, 3), cap_gwei=self.cfg.max_gas_price,
                )
            tx = self.protector.protect(self.build_request(trade, side, price, gas_price))

            if self.dry_run:
                self.logger.info(f"🔵 DRY RUN: {side.value} {trade.token.symbol} simulated")
                handle = TxHandle(f"dry-run-{trade.id}-{side.value.lower()}", time.time(), tx.private)
            else:
                handle = await asyncio.wait_for(self.submitter.submit(tx), self.timeout)
        except Exception as e:
            return ExecutionResult(False, FailureStage.REJECTED_BEFORE_BROADCAST, cause=e)

        if side == TradeSide.BUY:
            trade.submitted_at = handle.submitted_at

        # 2. Broadcast: wait for the receipt
        if self.dry_run:
            return ExecutionResult(True, tx_hash=handle.tx_hash, handle=handle)
        return await self._confirm(handle)

    async def _confirm(self, handle: TxHandle) -> ExecutionResult:
        try:
            confirmed = await asyncio.wait_for(
                self.submitter.await_confirmation(handle), self.confirmation_timeout
            )
        except Exception as e:
            # Timeout or lost receipt: the tx may still land
            return ExecutionResult(False, FailureStage.CONFIRMATION_TIMEOUT, handle.tx_hash, e, handle)

        if confirmed:
            return ExecutionResult(True, tx_hash=handle.tx_hash, handle=handle)
        return ExecutionResult(False, FailureStage.REVERTED, handle.tx_hash, handle=handle)

