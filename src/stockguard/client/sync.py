"""
Background stock synchronisation for a client-held cart.

All triggers (start, interval tick, window focus, page visible, manual
``sync_now``) are pushed onto one `asyncio.Queue`. A single executor task
drains it: whatever piled up while a sync was running is folded into one
follow-up sync, so two fetches never run at the same time and results are
applied in the order they were requested.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

import httpx

from ..exceptions import SyncFailed
from .cart import Cart
from .monitor import CartStockMonitor, StockIssue
from .records import StockRecord

logger = logging.getLogger(__name__)


class StockFetcher(Protocol):
    async def fetch(self, product_ids: Sequence[str]) -> list[StockRecord]: ...


class HttpStockFetcher:
    """
    Reads stock from the storefront's JSON endpoints.

    Transport errors, non-2xx responses and ``success: false`` bodies are
    all raised as `SyncFailed`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, f"{self.base_url}{path}", **kwargs)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SyncFailed(f"{method} {path} failed: {exc}") from exc

        if not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            raise SyncFailed(message or f"{method} {path} returned an unsuccessful response")
        return body

    async def fetch(self, product_ids: Sequence[str]) -> list[StockRecord]:
        body = await self._request(
            "POST", "/api/product/stock-sync", json={"productIds": list(product_ids)}
        )
        try:
            return [StockRecord.from_payload(item) for item in body.get("products", [])]
        except ValueError as exc:
            raise SyncFailed(str(exc)) from exc

    async def check(self, product_id: str) -> StockRecord:
        body = await self._request("GET", f"/api/product/{product_id}/check-stock")
        try:
            return StockRecord.from_payload(body.get("product"))
        except ValueError as exc:
            raise SyncFailed(str(exc)) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class Trigger(str, enum.Enum):
    START = "start"
    INTERVAL = "interval"
    FOCUS = "focus"
    VISIBLE = "visible"
    MANUAL = "manual"


@dataclass(frozen=True)
class SyncReport:
    trigger: Trigger
    ok: bool
    synced: int = 0
    issues: tuple[StockIssue, ...] = ()
    skipped: bool = False
    error: str | None = None


class StockSyncService:
    """
    Keeps a cart's stock expectations in line with the server.

    Triggers that arrive while a sync is running get one follow-up sync
    right after it. Other automatic triggers arriving less than
    ``min_spacing`` seconds after the previous sync started are dropped;
    ``sync_now`` always gets a sync, and if one is already running it waits
    for the next one. A failed fetch is logged and leaves the cart and the
    issue list untouched; the next trigger is the retry.

    Example
    -------
    >>> async with StockSyncService(HttpStockFetcher(url), cart) as service:
    ...     service.notify_focus()
    ...     report = await service.sync_now()
    """

    def __init__(
        self,
        fetcher: StockFetcher,
        cart: Cart,
        monitor: CartStockMonitor | None = None,
        *,
        interval: float = 30.0,
        min_spacing: float = 5.0,
        sync_on_start: bool = True,
        sync_on_interval: bool = True,
        sync_on_focus: bool = True,
        sync_on_visible: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.fetcher = fetcher
        self.cart = cart
        self.monitor = monitor or CartStockMonitor(cart)
        self.interval = interval
        self.min_spacing = min_spacing
        self.sync_on_start = sync_on_start
        self.sync_on_interval = sync_on_interval
        self.sync_on_focus = sync_on_focus
        self.sync_on_visible = sync_on_visible
        self._clock = clock

        self._queue: asyncio.Queue | None = None
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self._last_sync: float | None = None
        self.last_report: SyncReport | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def __aenter__(self) -> "StockSyncService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        if self._running:
            return

        self._queue = asyncio.Queue()
        self._running = True
        self._tasks.append(asyncio.create_task(self._executor(), name="stock-sync-executor"))
        if self.sync_on_interval:
            self._tasks.append(asyncio.create_task(self._ticker(), name="stock-sync-ticker"))
        if self.sync_on_start:
            self._enqueue(Trigger.START)

    async def stop(self) -> None:
        """
        Stop scheduling syncs. A fetch still in flight is cancelled and its
        result, if it arrives anyway, is discarded.
        """
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._queue is not None:
            while not self._queue.empty():
                _, waiter = self._queue.get_nowait()
                if waiter is not None and not waiter.done():
                    waiter.cancel()

    def notify_focus(self) -> None:
        if self.sync_on_focus:
            self._enqueue(Trigger.FOCUS)

    def notify_visibility(self, visible: bool) -> None:
        if visible and self.sync_on_visible:
            self._enqueue(Trigger.VISIBLE)

    async def sync_now(self) -> SyncReport:
        if not self._running:
            raise RuntimeError("stock sync service is not running")

        waiter = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((Trigger.MANUAL, waiter))
        return await waiter

    def _enqueue(self, trigger: Trigger) -> None:
        if self._running:
            self._queue.put_nowait((trigger, None))

    def _too_soon(self) -> bool:
        return self._last_sync is not None and self._clock() - self._last_sync < self.min_spacing

    async def _ticker(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._enqueue(Trigger.INTERVAL)

    async def _executor(self) -> None:
        follow_up = False
        while True:
            batch = [await self._queue.get()]
            while not self._queue.empty():
                batch.append(self._queue.get_nowait())

            waiters = [waiter for _, waiter in batch if waiter is not None]
            if not waiters and not follow_up and self._too_soon():
                logger.debug("dropping %d sync trigger(s) inside min spacing", len(batch))
                continue

            trigger = Trigger.MANUAL if waiters else batch[0][0]
            report = error = None
            try:
                report = await self._run(trigger)
            except asyncio.CancelledError:
                for waiter in waiters:
                    waiter.cancel()
                raise
            except Exception as exc:
                logger.exception("stock sync crashed")
                error = exc

            # Whatever was queued during the run gets one follow-up run.
            follow_up = not self._queue.empty()

            for waiter in waiters:
                if waiter.done():
                    continue
                if error is not None:
                    waiter.set_exception(error)
                else:
                    waiter.set_result(report)

    async def _run(self, trigger: Trigger) -> SyncReport:
        self._last_sync = self._clock()
        product_ids = self.cart.product_ids

        if not product_ids:
            self.monitor.clear()
            report = SyncReport(trigger=trigger, ok=True, skipped=True)
            self.last_report = report
            return report

        try:
            records = await self.fetcher.fetch(product_ids)
        except SyncFailed as exc:
            logger.warning("stock sync (%s) failed, keeping previous state: %s", trigger.value, exc)
            report = SyncReport(
                trigger=trigger, ok=False, issues=tuple(self.monitor.issues), error=str(exc)
            )
            self.last_report = report
            return report

        if not self._running:
            logger.debug("discarding stock sync result after stop")
            return SyncReport(trigger=trigger, ok=False, error="stopped")

        self.cart.apply_stock(records)
        issues = self.monitor.refresh(records)
        report = SyncReport(trigger=trigger, ok=True, synced=len(records), issues=tuple(issues))
        self.last_report = report
        logger.debug("stock sync (%s): %d records, %d issues", trigger.value, len(records), len(issues))
        return report
