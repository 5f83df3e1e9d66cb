import asyncio
import logging
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from launchsniper import lifecycle
from launchsniper.chain import MevProtector, TxHandle
from launchsniper.config import SniperConfig
from launchsniper.dedup import DecisionGuard
from launchsniper.events import EventBus, EventKind, FailureStage
from launchsniper.exceptions import TradingHalted
from launchsniper.execution import ExecutionResult, ExecutionService
from launchsniper.lifecycle import TradeManager
from launchsniper.models import ExitReason, TradeStatus

from conftest import FakeGas, make_opportunity, make_token


@pytest.fixture
def manager():
    execution = MagicMock()
    execution.execute_exit = AsyncMock(return_value=ExecutionResult(True, tx_hash="0xexit"))
    bus = EventBus()
    manager = TradeManager(SniperConfig(), execution, DecisionGuard(), bus, logging.getLogger("test"))
    manager.events = bus.subscribe()
    return manager


def open_active(manager, address="0xToken1", amount=0.1):
    trade = manager.create(make_opportunity(token=make_token(address)), amount)
    manager.guard.try_acquire(address)
    trade.transition(TradeStatus.ACTIVE)
    manager.guard.promote(address)
    return trade


def prices(value):
    async def price_of(address):
        return value
    return price_of


def drain(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class TestCreate:
    def test_create_is_pending_with_levels(self, manager):
        trade = manager.create(make_opportunity(current_price=0.01), 0.08)

        assert trade.status == TradeStatus.PENDING
        assert trade.stop_loss == pytest.approx(0.009)
        assert trade.take_profit == pytest.approx(0.012)
        assert manager.get(trade.id) is trade
        assert manager.open_trade_for("0xTOKEN1") is trade

    def test_create_after_halt_is_refused(self, manager):
        manager.stop_all()
        with pytest.raises(TradingHalted):
            manager.create(make_opportunity(), 0.05)
        manager.resume()
        assert manager.create(make_opportunity(), 0.05).status == TradeStatus.PENDING


class TestExits:
    @pytest.mark.asyncio
    async def test_take_profit_completes_trade(self, manager):
        trade = open_active(manager, amount=0.1)

        await manager.check_exits(prices(0.013))

        assert trade.status == TradeStatus.COMPLETED
        assert trade.exit_reason == ExitReason.TAKE_PROFIT
        assert trade.realized_pnl == pytest.approx(0.03)
        assert manager.total_profit == pytest.approx(0.03)
        assert not manager.guard.is_busy("0xToken1")

        kinds = [e.kind for e in drain(manager.events)]
        assert kinds == [EventKind.PROFIT_UPDATED, EventKind.TRADE_EXITED]

    @pytest.mark.asyncio
    async def test_stop_loss_stops_trade(self, manager):
        trade = open_active(manager, amount=0.1)

        await manager.check_exits(prices(0.008))

        assert trade.status == TradeStatus.STOPPED
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert manager.total_profit == pytest.approx(-0.02)

    @pytest.mark.asyncio
    async def test_price_between_levels_holds(self, manager):
        trade = open_active(manager)

        await manager.check_exits(prices(0.0105))

        assert trade.status == TradeStatus.ACTIVE
        manager.execution.execute_exit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_exit_stays_active(self, manager):
        manager.execution.execute_exit.return_value = ExecutionResult(False, FailureStage.REVERTED, "0xexit")
        trade = open_active(manager)

        await manager.check_exits(prices(0.013))

        assert trade.status == TradeStatus.ACTIVE
        assert manager.guard.is_busy("0xToken1")
        assert manager.total_profit == 0.0

    @pytest.mark.asyncio
    async def test_one_failing_trade_does_not_block_others(self, manager):
        bad = open_active(manager, "0xBad")
        good = open_active(manager, "0xGood")

        async def price_of(address):
            if address == "0xBad":
                raise RuntimeError("boom")
            return 0.013

        await manager.check_exits(price_of)

        assert bad.status == TradeStatus.ACTIVE
        assert good.status == TradeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_missing_price_is_skipped(self, manager):
        trade = open_active(manager)
        await manager.check_exits(prices(None))
        assert trade.status == TradeStatus.ACTIVE


class TestStopAll:
    def test_stops_active_and_leaves_pending(self, manager):
        active = open_active(manager, "0xA")
        pending = manager.create(make_opportunity(token=make_token("0xB")), 0.05)

        stopped = manager.stop_all()

        assert stopped == [active]
        assert active.status == TradeStatus.STOPPED
        assert pending.status == TradeStatus.PENDING
        assert manager.halted
        assert not manager.guard.is_busy("0xA")
        assert manager.active_trades() == []

    def test_closed_trades_untouched(self, manager):
        done = open_active(manager, "0xDone")
        done.transition(TradeStatus.COMPLETED)

        stopped = manager.stop_all()

        assert done not in stopped
        assert done.status == TradeStatus.COMPLETED


def stalled_chain_manager(max_exit_attempts=3):
    """TradeManager over a real ExecutionService whose receipts never arrive."""
    async def never_confirms(handle):
        await asyncio.Event().wait()

    submitter = MagicMock()
    submitter.submit = AsyncMock(return_value=TxHandle("0xsell", time.time(), private=True))
    submitter.await_confirmation = AsyncMock(side_effect=never_confirms)
    bus = EventBus()
    cfg = SniperConfig(max_exit_attempts=max_exit_attempts)
    execution = ExecutionService(
        cfg, FakeGas(5.0), MevProtector(0.05, 30), submitter, bus,
        logging.getLogger("test"), timeout=1.0, confirmation_timeout=0.01,
    )
    manager = TradeManager(cfg, execution, DecisionGuard(), bus, logging.getLogger("test"))
    return manager, submitter


class TestExitRetries:
    @pytest.mark.asyncio
    async def test_unconfirmed_exit_is_watched_not_resent(self):
        manager, submitter = stalled_chain_manager(max_exit_attempts=5)
        trade = open_active(manager)

        for _ in range(3):
            await manager.check_exits(prices(0.013))

        assert submitter.submit.await_count == 1
        assert submitter.await_confirmation.await_count == 3
        assert manager.pending_exit(trade.id).handle.tx_hash == "0xsell"
        assert trade.status == TradeStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_late_confirmation_settles_at_signal_price(self):
        manager, submitter = stalled_chain_manager()
        trade = open_active(manager, amount=0.1)
        await manager.check_exits(prices(0.013))

        submitter.await_confirmation.side_effect = None
        submitter.await_confirmation.return_value = True
        await manager.check_exits(prices(0.5))

        assert submitter.submit.await_count == 1
        assert trade.status == TradeStatus.COMPLETED
        assert trade.exit_price == 0.013
        assert trade.exit_tx_hash == "0xsell"
        assert manager.total_profit == pytest.approx(0.03)
        assert manager.pending_exit(trade.id) is None
        assert not manager.guard.is_busy("0xToken1")

    @pytest.mark.asyncio
    async def test_unconfirmed_exit_written_off_after_limit(self):
        manager, submitter = stalled_chain_manager(max_exit_attempts=2)
        trade = open_active(manager)

        for _ in range(4):
            await manager.check_exits(prices(0.013))

        assert submitter.submit.await_count == 1
        assert trade.status == TradeStatus.STOPPED
        assert trade.exit_reason is None
        assert manager.total_profit == 0.0
        assert manager.pending_exit(trade.id) is None
        assert not manager.guard.is_busy("0xToken1")

    @pytest.mark.asyncio
    async def test_reverted_exits_stop_after_limit(self, manager):
        manager.execution.execute_exit.return_value = ExecutionResult(False, FailureStage.REVERTED, "0xexit")
        trade = open_active(manager)

        for _ in range(5):
            await manager.check_exits(prices(0.013))

        assert manager.execution.execute_exit.await_count == manager.cfg.max_exit_attempts
        assert trade.status == TradeStatus.STOPPED
        assert manager.total_profit == 0.0
        assert not manager.guard.is_busy("0xToken1")

    @pytest.mark.asyncio
    async def test_refused_exits_do_not_count(self, manager):
        manager.execution.execute_exit.return_value = ExecutionResult(
            False, FailureStage.REJECTED_BEFORE_BROADCAST, cause=RuntimeError("gas")
        )
        trade = open_active(manager)

        for _ in range(5):
            await manager.check_exits(prices(0.013))

        assert manager.execution.execute_exit.await_count == 5
        assert trade.status == TradeStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_halted_trade_still_books_confirmed_exit(self):
        manager, submitter = stalled_chain_manager()
        trade = open_active(manager, amount=0.1)
        await manager.check_exits(prices(0.008))
        manager.stop_all()

        submitter.await_confirmation.side_effect = None
        submitter.await_confirmation.return_value = True
        await manager.check_exits(prices(0.008))

        assert trade.status == TradeStatus.STOPPED
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert manager.total_profit == pytest.approx(-0.02)


class TestHistory:
    def test_closed_trades_are_pruned(self, manager, monkeypatch):
        monkeypatch.setattr(lifecycle, "CLOSED_TRADE_HISTORY", 2)
        closed = []
        for i in range(4):
            trade = manager.create(make_opportunity(token=make_token(f"0xT{i}")), 0.05)
            trade.transition(TradeStatus.STOPPED)
            closed.append(trade)
        live = open_active(manager, "0xLive")

        manager.create(make_opportunity(token=make_token("0xNext")), 0.05)

        assert manager.get(closed[0].id) is None
        assert manager.get(closed[1].id) is None
        assert manager.get(closed[3].id) is closed[3]
        assert manager.get(live.id) is live
