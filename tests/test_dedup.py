import asyncio

import pytest

from launchsniper.dedup import DecisionGuard
from launchsniper.events import EventBus, EventKind


class TestDecisionGuard:
    def test_second_acquire_is_refused(self):
        guard = DecisionGuard()
        assert guard.try_acquire("0xAbC")
        assert not guard.try_acquire("0xabc")
        assert guard.is_busy("0xABC")

    def test_release_frees_token(self):
        guard = DecisionGuard()
        guard.try_acquire("0xabc")
        guard.release("0xabc")
        assert not guard.is_busy("0xabc")
        assert guard.try_acquire("0xabc")

    def test_promote_keeps_blocking(self):
        guard = DecisionGuard()
        guard.try_acquire("0xabc")
        guard.promote("0xabc")

        assert guard.in_decision == frozenset()
        assert guard.open_positions == {"0xabc"}
        assert not guard.try_acquire("0xabc")

        guard.release("0xabc")
        assert guard.try_acquire("0xabc")

    def test_tokens_are_independent(self):
        guard = DecisionGuard()
        assert guard.try_acquire("0x1")
        assert guard.try_acquire("0x2")

    @pytest.mark.asyncio
    async def test_concurrent_deciders_get_one_slot(self):
        guard = DecisionGuard()
        winners = []

        async def decide(n):
            if guard.try_acquire("0xabc"):
                winners.append(n)
                await asyncio.sleep(0.01)
                guard.release("0xabc")

        await asyncio.gather(*(decide(n) for n in range(10)))
        assert len(winners) == 1


class TestEventBus:
    def test_fan_out(self):
        bus = EventBus()
        a, b = bus.subscribe(), bus.subscribe()
        bus.profit_updated(1.5)

        assert a.get_nowait().kind == EventKind.PROFIT_UPDATED
        assert b.get_nowait().total_profit == 1.5

    def test_full_queue_drops(self):
        bus = EventBus(maxsize=1)
        queue = bus.subscribe()
        bus.profit_updated(1.0)
        bus.profit_updated(2.0)

        assert queue.qsize() == 1
        assert bus.dropped == 1

    def test_unsubscribe(self):
        bus = EventBus()
        queue = bus.subscribe()
        bus.unsubscribe(queue)
        bus.profit_updated(1.0)
        assert queue.empty()
