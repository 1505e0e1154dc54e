"""
Live delivery tracking.

Runner side: ``RunnerLocationTracker`` watches the device position and writes
each sample onto the order, conditional on the order still being delivered
by that runner. It stops on its own when a write is rejected or the order
reaches a terminal status, and always clears the geolocation watch.

Buyer/vendor side: ``DeliveryTracker`` follows one order on the change feed
and recomputes the ETA on every event. The ETA is never stored.
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional

from campus_eats.core.retry import RetryPolicy, run_blocking
from campus_eats.domain.errors import MarketplaceError, OrderNotFound
from campus_eats.domain.geo import DEFAULT_SPEED_KMH, INDETERMINATE, EtaEstimate, eta_for_order
from campus_eats.domain.models import utcnow
from campus_eats.domain.order_status import TERMINAL_STATES, OrderStatus
from campus_eats.infrastructure.change_feed import publish_after_commit
from campus_eats.interfaces.IChangeFeed import ORDERS_TABLE, ChangeEvent, ChangeFilter, IChangeFeed
from campus_eats.interfaces.IGeolocationSource import (
    IGeolocationSource,
    PositionError,
    PositionSample,
    WatchOptions,
)
from campus_eats.interfaces.IOrderRepository import IOrderRepository, UpdateOutcome

logger = logging.getLogger(__name__)

TERMINAL_VALUES = {s.value for s in TERMINAL_STATES}

EtaListener = Callable[[EtaEstimate], Any]


class LocationEngine:

    def __init__(
        self,
        orders: IOrderRepository,
        feed: IChangeFeed,
        policy: Optional[RetryPolicy] = None,
        speed_kmh: float = DEFAULT_SPEED_KMH,
    ):
        self.orders = orders
        self.feed = feed
        self.policy = policy
        self.speed_kmh = speed_kmh

    async def record_position(self, order_id: str, runner_id: str, sample: PositionSample) -> bool:
        """Store the runner's position. False when the order is no longer this runner's delivery."""
        fields = {
            "runner_lat": sample.latitude,
            "runner_lng": sample.longitude,
            "last_location_update": sample.timestamp or utcnow(),
        }
        # Narrow write: never touches status, and never lands after delivery
        match = {"status": OrderStatus.DELIVERING, "runner_id": runner_id}
        outcome = await run_blocking(self.orders.update_fields, order_id, fields, match, policy=self.policy)

        if outcome == UpdateOutcome.NOT_FOUND:
            raise OrderNotFound(order_id)
        if outcome == UpdateOutcome.PRECONDITION_FAILED:
            return False

        order = await run_blocking(self.orders.get_by_id, order_id, policy=self.policy)
        if order is not None:
            await publish_after_commit(self.feed, ChangeEvent.for_order(order), self.policy)
        return True

    async def eta_for(self, order_id: str) -> EtaEstimate:
        order = await run_blocking(self.orders.get_by_id, order_id, policy=self.policy)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status != OrderStatus.DELIVERING.value:
            return INDETERMINATE
        return eta_for_order(order, self.speed_kmh)


class RunnerLocationTracker:

    def __init__(
        self,
        engine: LocationEngine,
        source: IGeolocationSource,
        order_id: str,
        runner_id: str,
        options: Optional[WatchOptions] = None,
    ):
        self.engine = engine
        self.source = source
        self.order_id = order_id
        self.runner_id = runner_id
        self.options = options or WatchOptions()

        self.samples_written = 0
        self.stop_reason: Optional[str] = None
        self.last_error: Optional[Any] = None

        self._watch_task: Optional[asyncio.Task] = None
        self._status_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._watch_task is not None:
            return
        subscription = await self.engine.feed.subscribe(ORDERS_TABLE, ChangeFilter("id", self.order_id))
        self._status_task = asyncio.create_task(self._follow_status(subscription))
        self._watch_task = asyncio.create_task(self._watch())
        logger.info(f"📍 Tracking runner {self.runner_id} on order {self.order_id}")

    async def stop(self, reason: str = "stopped") -> None:
        if self.stop_reason is None:
            self.stop_reason = reason
        for task in (self._status_task, self._watch_task):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._status_task, self._watch_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        await self.source.clear_watch()

    async def wait(self) -> None:
        """Wait until tracking ends by itself."""
        if self._watch_task is not None:
            await self._watch_task

    async def _watch(self) -> None:
        try:
            async for reading in self.source.watch(self.options):
                if isinstance(reading, PositionError):
                    self.last_error = reading
                    logger.warning(f"⚠️ Geolocation error ({reading.code}): {reading.message}")
                    continue
                try:
                    accepted = await self.engine.record_position(self.order_id, self.runner_id, reading)
                except MarketplaceError as e:
                    # Retries are exhausted for this sample; the next one may get through
                    self.last_error = e
                    logger.warning(f"⚠️ Location write failed for order {self.order_id}: {e}")
                    continue
                if not accepted:
                    self.stop_reason = self.stop_reason or "rejected"
                    logger.info(f"ℹ️ Order {self.order_id} is no longer delivering, tracking stopped")
                    break
                self.samples_written += 1
        finally:
            await self.source.clear_watch()
            if self._status_task is not None and not self._status_task.done():
                self._status_task.cancel()

    async def _follow_status(self, subscription) -> None:
        try:
            async for event in subscription:
                if event.record.get("status") in TERMINAL_VALUES:
                    self.stop_reason = self.stop_reason or event.record["status"]
                    await self.source.clear_watch()
                    return
        finally:
            await subscription.close()


class DeliveryTracker:
    """Follows one order and re-derives its ETA on every change event."""

    def __init__(self, engine: LocationEngine, order_id: str):
        self.engine = engine
        self.order_id = order_id
        self.eta: EtaEstimate = INDETERMINATE
        self.last_error: Optional[MarketplaceError] = None
        self._listeners: List[EtaListener] = []
        self._task: Optional[asyncio.Task] = None

    def on_update(self, listener: EtaListener) -> None:
        self._listeners.append(listener)

    async def start(self) -> EtaEstimate:
        await self._recompute()
        subscription = await self.engine.feed.subscribe(ORDERS_TABLE, ChangeFilter("id", self.order_id))
        self._task = asyncio.create_task(self._follow(subscription))
        return self.eta

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> "DeliveryTracker":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _follow(self, subscription) -> None:
        try:
            async for event in subscription:
                await self._recompute()
                if event.record.get("status") in TERMINAL_VALUES:
                    return
        finally:
            await subscription.close()

    async def _recompute(self) -> None:
        try:
            self.eta = await self.engine.eta_for(self.order_id)
        except MarketplaceError as e:
            self.last_error = e
            logger.warning(f"⚠️ ETA refresh failed for order {self.order_id}: {e}")
            return
        for listener in list(self._listeners):
            try:
                result = listener(self.eta)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"❌ ETA listener failed: {e}", exc_info=True)
