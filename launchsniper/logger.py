# launchsniper/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
from logging.handlers import RotatingFileHandler
import sys
import os
import time
from typing import List, Any, Optional

from .events import TradeEvent

AUDIT_HEADER = [
    "time", "event", "trade_id", "symbol", "token", "status",
    "amount", "entry_price", "exit_price", "pnl", "total_profit", "stage", "detail",
]


class AsyncAuditLogger:
    """
    CSV audit trail of trade events, one row per event.
    Rows are queued by the trading loop and flushed to disk by a background
    task, so the loop never waits on file I/O.
    """
    def __init__(self, filepath: str):
        self.filepath = filepath
        self._rows: asyncio.Queue = asyncio.Queue()
        self._flusher = None

    async def start(self):
        """
        Creates the audit file with its header row on first use, then starts
        the flusher.
        """
        parent = os.path.dirname(self.filepath)
        if parent:
            os.makedirs(parent, exist_ok=True)

        if not os.path.exists(self.filepath):
            async with aiofiles.open(self.filepath, mode='w', newline='') as f:
                await AsyncWriter(f, dialect='unix').writerow(AUDIT_HEADER)
        self._flusher = asyncio.create_task(self._flush_forever())

    async def log_trade(self, row: List[Any]):
        await self._rows.put(row)

    async def record_event(self, event: TradeEvent):
        await self.log_trade(event_to_row(event))

    async def consume(self, queue: asyncio.Queue):
        """Drains an EventBus subscription into the audit file until cancelled."""
        while True:
            event = await queue.get()
            await self.record_event(event)

    async def _flush_forever(self):
        while True:
            batch = [await self._rows.get()]
            while not self._rows.empty():
                batch.append(self._rows.get_nowait())
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    await AsyncWriter(f, dialect='unix').writerows(batch)
            except Exception as e:
                # Audit loss is reported, trading carries on
                print(f"AUDIT WRITE FAILED ({len(batch)} rows): {e}", file=sys.stderr)
            finally:
                for _ in batch:
                    self._rows.task_done()

    async def stop(self):
        await self._rows.join()
        if self._flusher:
            self._flusher.cancel()


def event_to_row(event: TradeEvent) -> List[Any]:
    trade = event.trade
    stamp = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(event.timestamp))
    if trade is None:
        return [stamp, event.kind.value, "", "", "", "", "", "", "", "",
                f"{event.total_profit:.6f}", "", ""]
    return [
        stamp,
        event.kind.value,
        trade.id,
        trade.token.symbol,
        trade.token.address,
        trade.status.value,
        f"{trade.amount:.6f}",
        f"{trade.entry_price:.10f}",
        f"{trade.exit_price:.10f}" if trade.exit_price is not None else "",
        f"{trade.realized_pnl:.6f}",
        f"{event.total_profit:.6f}",
        event.stage.value if event.stage else "",
        str(event.cause) if event.cause else "",
    ]


def setup_console_logger(name: str, level: str, log_file: Optional[str] = None):
    """
    Sets up the standard Python logger for console output, plus an optional
    rotating log file.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        if log_file:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
