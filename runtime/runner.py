import asyncio
from typing import Any, Callable, List

from loguru import logger

from engine.engine import Engine, Snapshot
from engine.model import OutboundMessage


class TickRunner:
    """Async driver that runs the engine on a fixed tick cadence.

    Ticks and administrative operations share one lock, so callers only ever
    observe the state before or after a complete tick.
    """

    def __init__(self, engine: Engine, tick_ms: int = 1000, time_compression: float = 1.0):
        self.engine = engine
        self.tick_ms = tick_ms
        self.time_compression = time_compression
        self.sleep_s = (tick_ms / 1000.0) / max(0.1, time_compression)
        self.ticks = 0
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self):
        """Start the tick loop."""
        if self._task:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"[TickRunner] Started ({self.tick_ms} ms ticks, {self.time_compression}x)")

    async def stop(self):
        """Stop the tick loop gracefully. The engine keeps its last state."""
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"[TickRunner] Stopped after {self.ticks} ticks")

    async def tick(self) -> List[OutboundMessage]:
        """Run a single tick under the lock."""
        async with self._lock:
            msgs = self.engine.step(self.tick_ms)
        self.ticks += 1
        if msgs:
            logger.debug(f"[TickRunner] Tick produced {len(msgs)} message(s)")
        return msgs

    async def _loop(self):
        """Main tick loop - step engine, then sleep until the next tick."""
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("[TickRunner] Tick failed, continuing with previous state")
            await asyncio.sleep(self.sleep_s)

    async def execute(self, op: Callable[..., Any], *args, **kwargs) -> Any:
        """Run an administrative operation serialized with ticks."""
        async with self._lock:
            return op(*args, **kwargs)

    async def snapshot(self) -> Snapshot:
        """Get current state and drain pending messages (thread-safe)."""
        async with self._lock:
            return self.engine.snapshot()

    def set_time_compression(self, time_compression: float):
        """Update time compression factor (1.0 = real-time, higher = faster)."""
        self.time_compression = max(0.1, min(1000.0, time_compression))
        self.sleep_s = (self.tick_ms / 1000.0) / self.time_compression
        logger.info(f"[TickRunner] Time compression set to {self.time_compression}x (sleep: {self.sleep_s:.4f}s)")
