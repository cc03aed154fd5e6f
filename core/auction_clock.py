"""
伺服器端拍賣時鐘

計時由伺服器驅動，不依賴任何客戶端：每 tick_interval_seconds 醒來一次，
依 time.monotonic() 量到的實際經過時間，把累積滿的整秒交給 AuctionEngine.tick。
tick 在 threadpool 裡執行，避免 writer_lock 阻塞 event loop。
"""
import asyncio
import logging
import time
from typing import Callable, Optional

from starlette.concurrency import run_in_threadpool

from core.auction_engine import AuctionEngine
from database import SessionLocal

logger = logging.getLogger(__name__)


def run_tick(session_factory: Callable = SessionLocal, elapsed: int = 1) -> None:
    db = session_factory()
    try:
        AuctionEngine.tick(db, elapsed)
    finally:
        db.close()


class AuctionClock:

    def __init__(self, interval: float, session_factory: Callable = SessionLocal):
        self.interval = interval
        self.session_factory = session_factory
        self._task: Optional[asyncio.Task] = None
        self._last: Optional[float] = None
        self._carry = 0.0

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._last = time.monotonic()
            self._carry = 0.0
            self._task = asyncio.get_running_loop().create_task(self._run())
            logger.info(f"Auction clock started ({self.interval}s per wake-up)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Auction clock stopped")

    def take_elapsed(self, now: float) -> int:
        """
        回傳上次呼叫以來累積滿的整秒數，不足一秒的部分留到下一次

        參數：
            now: time.monotonic() 的讀數
        """
        if self._last is None:
            self._last = now
        self._carry += max(0.0, now - self._last)
        self._last = now
        whole = int(self._carry)
        self._carry -= whole
        return whole

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            elapsed = self.take_elapsed(time.monotonic())
            if elapsed <= 0:
                continue
            try:
                await run_in_threadpool(run_tick, self.session_factory, elapsed)
            except Exception as e:
                # 單一 tick 失敗不能讓時鐘停掉，下一拍會重試
                logger.error(f"Auction clock tick failed: {e}", exc_info=True)
