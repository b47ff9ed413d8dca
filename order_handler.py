# Filename: order_handler.py

import asyncio
import logging
from typing import Callable, List, Optional

from models import MemeToken, OrderRequest, OrderResponse, OrderType
from token_registry import TokenRegistry
from trade_logger import SessionLogger

logger = logging.getLogger("OrderHandler")

ORDERS_CHANNEL = "trades.log"


def _mark(order_type: OrderType) -> Callable[[MemeToken], None]:
    if order_type is OrderType.SELL:
        return lambda t: t.mark_sold()
    return lambda t: setattr(t, "trading", True)


def _rollback(order_type: OrderType) -> Callable[[MemeToken], None]:
    if order_type is OrderType.SELL:
        return lambda t: setattr(t, "sold", False)
    return lambda t: setattr(t, "trading", False)


class OrderHandler:
    """
    Bounded order queue drained by a fixed pool of workers.

    Each order flips the token's lifecycle flag in the active registry,
    is written to the trades audit channel, then goes to the executor with
    retries. A filled sell moves the token to the closed registry; a failed
    order puts the flag back so the next trade tick can try again.
    """

    def __init__(self, executor, active: TokenRegistry, closed: TokenRegistry, config,
                 session_logger: Optional[SessionLogger] = None, notifier=None,
                 stop_event: Optional[asyncio.Event] = None):
        self.executor = executor
        self.active = active
        self.closed = closed
        self.config = config
        self.session_logger = session_logger
        self.notifier = notifier
        self.stop_event = stop_event or asyncio.Event()

        self.queue: asyncio.Queue = asyncio.Queue(maxsize=config.get("ORDER_QUEUE_SIZE", 100))
        self.worker_count = max(1, config.get("ORDER_WORKERS", 4))
        self.max_retries = max(1, config.get("MAX_RETRIES", 5))
        self.retry_base_delay = config.get("RETRY_BASE_DELAY_SECONDS", 1.0)
        self.retry_max_delay = config.get("RETRY_MAX_DELAY_SECONDS", 16.0)
        self.shutdown_timeout = config.get("SHUTDOWN_TIMEOUT_SECONDS", 30.0)

        self.workers: List[asyncio.Task] = []
        self.stats = {"submitted": 0, "succeeded": 0, "failed": 0}

    async def submit(self, request: OrderRequest) -> None:
        """Queues an order. Waits only while the queue is full."""
        await self.queue.put(request)
        self.stats["submitted"] += 1
        logger.info(f"[ORDER] Queued {request.order_type.value.upper()} {request.token.symbol} "
                    f"({request.token.mint}): {request.reason}")

    def start(self) -> None:
        if self.workers:
            return
        if self.session_logger is not None:
            self.session_logger.open_channel(ORDERS_CHANNEL)
        self.workers = [asyncio.create_task(self._worker(i)) for i in range(self.worker_count)]
        logger.info(f"[ORDER] Started {self.worker_count} order workers")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Waits for queued and in-flight orders, then cancels the workers."""
        timeout = self.shutdown_timeout if timeout is None else timeout
        if self.workers:
            try:
                await asyncio.wait_for(self.queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"[ORDER] Shutdown timed out with {self.queue.qsize()} orders still queued")

        for worker in self.workers:
            worker.cancel()
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers = []

        if self.session_logger is not None:
            self.session_logger.close_channel(ORDERS_CHANNEL)
        logger.info("[ORDER] Order handler stopped")

    async def run(self) -> None:
        self.start()
        await self.stop_event.wait()
        await self.stop()

    async def _worker(self, worker_id: int) -> None:
        while True:
            request = await self.queue.get()
            try:
                await self.handle_order(request)
            except Exception as e:
                logger.error(f"[ORDER] Worker {worker_id} failed on {request.token.mint}: {e}")
                self._resolve(request, OrderResponse(success=False, error=str(e)))
            finally:
                self.queue.task_done()

    async def handle_order(self, request: OrderRequest) -> OrderResponse:
        mint = request.token.mint
        order_type = request.order_type

        token = self.active.update(mint, _mark(order_type))
        if token is None:
            token = request.token.copy()
            _mark(order_type)(token)

        if self.session_logger is not None:
            self.session_logger.try_append(ORDERS_CHANNEL, [
                order_type.value.upper(), token.mint, token.name, token.symbol,
                token.market_cap, token.price, request.reason,
            ])

        response = await self._execute_with_retry(order_type, token)

        if response.success:
            self.stats["succeeded"] += 1
            logger.info(f"[ORDER] {order_type.value.capitalize()} order executed for token={mint} "
                        f"reason={request.reason}")
            if order_type is OrderType.SELL:
                self.closed.set(token)
                self.active.delete(mint)
        else:
            self.stats["failed"] += 1
            logger.error(f"[ORDER] {order_type.value.capitalize()} order failed: token={mint} err={response.error}")
            self.active.update(mint, _rollback(order_type))

        self._resolve(request, response)
        await self._notify(request, token, response)
        return response

    async def _execute_with_retry(self, order_type: OrderType, token: MemeToken) -> OrderResponse:
        last_error = ""
        for attempt in range(self.max_retries):
            try:
                if order_type is OrderType.SELL:
                    await self.executor.execute_sell_order(token)
                else:
                    await self.executor.execute_buy_order(token)
                return OrderResponse(success=True)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = str(e)
                logger.warning(f"[ORDER] {order_type.value} attempt {attempt + 1}/{self.max_retries} "
                               f"for {token.mint} failed: {e}")

            if attempt + 1 < self.max_retries:
                await asyncio.sleep(min(self.retry_base_delay * 2 ** attempt, self.retry_max_delay))

        return OrderResponse(
            success=False,
            error=f"failed to execute {order_type.value} after {self.max_retries} retries: {last_error}",
        )

    @staticmethod
    def _resolve(request: OrderRequest, response: OrderResponse) -> None:
        if request.result is not None and not request.result.done():
            request.result.set_result(response)

    async def _notify(self, request: OrderRequest, token: MemeToken, response: OrderResponse) -> None:
        if self.notifier is None:
            return
        await asyncio.to_thread(
            self.notifier.send_order_alert, token, request.order_type, response, request.reason
        )
