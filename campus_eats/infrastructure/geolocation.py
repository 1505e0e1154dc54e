import asyncio
import logging
from typing import AsyncIterator

from campus_eats.interfaces.IGeolocationSource import (
    IGeolocationSource,
    PositionError,
    PositionReading,
    PositionSample,
    WatchOptions,
)

logger = logging.getLogger(__name__)

_STOP = object()


class QueueGeolocationSource(IGeolocationSource):
    """
    Geolocation fed by the runner's device (HTTP/WebSocket pushes) or by tests.
    ``push`` enqueues a reading; ``watch`` yields them until ``clear_watch``.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._watching = False

    def push(self, reading: PositionReading) -> None:
        self._queue.put_nowait(reading)

    def push_position(self, latitude: float, longitude: float, accuracy: float | None = None) -> None:
        self.push(PositionSample(latitude=latitude, longitude=longitude, accuracy=accuracy))

    def push_error(self, code: str, message: str) -> None:
        self.push(PositionError(code=code, message=message))

    async def watch(self, options: WatchOptions) -> AsyncIterator[PositionReading]:
        if not options.high_accuracy or options.maximum_age_ms != 0:
            logger.warning("⚠️ Geolocation: watch requested without high accuracy / fresh positions")
        self._watching = True
        try:
            while self._watching:
                reading = await self._queue.get()
                if reading is _STOP:
                    break
                yield reading
        finally:
            self._watching = False

    async def clear_watch(self) -> None:
        if self._watching:
            self._watching = False
            self._queue.put_nowait(_STOP)

    @property
    def watching(self) -> bool:
        return self._watching
