"""
Tests for the presence registry and the server-driven auction clock.
"""

import asyncio

from core.auction_clock import AuctionClock, run_tick
from core.auction_engine import AuctionEngine, get_auction_state
from core.presence import PresenceRegistry
from database import SessionLocal, settings
from models import AuctionStatus


class TestPresenceRegistry:
    def test_register_reports_changes(self):
        registry = PresenceRegistry()
        assert registry.register("c1", "E1") is True
        assert registry.register("c2", "E1") is False
        assert registry.online() == ["E1"]

    def test_last_connection_takes_participant_offline(self):
        registry = PresenceRegistry()
        registry.register("c1", "E1")
        registry.register("c2", "E1")

        assert registry.unregister("c1") is False
        assert registry.online() == ["E1"]
        assert registry.unregister("c2") is True
        assert registry.online() == []

    def test_reregister_moves_connection(self):
        registry = PresenceRegistry()
        registry.register("c1", "E1")
        assert registry.register("c1", "E2") is True
        assert registry.online() == ["E2"]

    def test_unknown_connection(self):
        assert PresenceRegistry().unregister("nobody") is False


class TestAuctionClock:
    def test_run_tick_uses_own_session(self, db, live_auction):
        AuctionEngine.select_item(db, 1)

        run_tick(SessionLocal, elapsed=settings.bid_timer_seconds)

        db.expire_all()
        assert get_auction_state(db).status == AuctionStatus.UNSOLD

    def test_sub_second_wakeups_accumulate_whole_seconds(self):
        clock = AuctionClock(0.5)
        clock._last = 100.0

        counted = [clock.take_elapsed(100.0 + 0.5 * step) for step in range(1, 9)]

        assert counted == [0, 1, 0, 1, 0, 1, 0, 1]
        assert sum(counted) == 4

    def test_slow_wakeups_count_every_second(self):
        clock = AuctionClock(2.5)
        clock._last = 0.0

        assert clock.take_elapsed(2.5) == 2
        assert clock.take_elapsed(5.0) == 3

    def test_clock_decrements_by_wall_time(self, monkeypatch):
        counted = []
        monkeypatch.setattr(
            "core.auction_clock.run_tick",
            lambda factory, elapsed: counted.append(elapsed)
        )

        async def run_clock():
            clock = AuctionClock(0.05)
            clock.start()
            await asyncio.sleep(1.3)
            await clock.stop()

        asyncio.run(run_clock())

        assert sum(counted) == 1

    def test_clock_ticks_the_engine(self, db, live_auction):
        AuctionEngine.select_item(db, 1)

        async def run_clock():
            clock = AuctionClock(0.1)
            clock.start()
            await asyncio.sleep(1.3)
            await clock.stop()

        asyncio.run(run_clock())

        db.expire_all()
        assert get_auction_state(db).timer_seconds == settings.bid_timer_seconds - 1
