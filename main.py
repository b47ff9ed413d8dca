# Filename: main.py

import asyncio
import logging
import signal
from typing import List, Optional

from config import load_config, load_environment
from order_handler import OrderHandler
from position_tracker import PositionTracker
from pump_fun import CurveStateFetcher
from simulated_trader import SimulatedTrader
from telegram_alert import TelegramNotifier
from token_monitor import TokenMonitor
from token_registry import TokenRegistry
from trade_logger import SessionLogger
from trader import PumpFunTrader
from websocket_listener import ListenerConnectionError, PumpFunListener

logger = logging.getLogger("Main")


class SniperBot:
    """
    Owns the registries and the stop event and wires the pipeline:
    listener -> candidates -> monitor -> active -> trade loop -> order handler.
    Any collaborator can be injected; the rest are built from config.
    """

    def __init__(self, config, fetcher=None, executor=None, listener=None, notifier=None,
                 session_logger: Optional[SessionLogger] = None):
        self.config = config
        self.stop_event = asyncio.Event()

        self.candidates = TokenRegistry("candidates")
        self.active = TokenRegistry("active")
        self.closed = TokenRegistry("closed")

        self.fetcher = fetcher or CurveStateFetcher(
            config["RPC_HTTP_ENDPOINT"],
            commitment=config.get("COMMITMENT", "confirmed"),
            timeout=config.get("FETCH_TIMEOUT_SECONDS", 10.0),
        )

        if notifier is None and config.get("ENABLE_TELEGRAM") and config.get("TELEGRAM_BOT_TOKEN") \
                and config.get("TELEGRAM_CHAT_ID"):
            notifier = TelegramNotifier.from_config(config)
        self.notifier = notifier

        if executor is None:
            if config.get("SIMULATION_MODE", True):
                logger.info("🧪 Running in SIMULATION mode")
                executor = SimulatedTrader(config)
            else:
                logger.info("💰 Running in REAL TRADING mode" + (" (dry run)" if config.get("DRY_RUN") else ""))
                executor = PumpFunTrader(config, self.fetcher)
        self.executor = executor

        self.listener = listener or PumpFunListener(
            config["RPC_WEBSOCKET_ENDPOINT"],
            commitment=config.get("LOGS_COMMITMENT", "processed"),
            queue_size=config.get("DISCOVERY_QUEUE_SIZE", 1000),
            overflow_policy=config.get("DISCOVERY_OVERFLOW_POLICY", "block"),
            connect_retries=config.get("LISTENER_CONNECT_RETRIES", 5),
            retry_delay=config.get("LISTENER_RETRY_DELAY_SECONDS", 1.0),
        )
        self.session_logger = session_logger or SessionLogger(config.get("LOG_DIR", "trade-sessions"))

        self.order_handler = OrderHandler(
            self.executor, self.active, self.closed, config,
            session_logger=self.session_logger, notifier=self.notifier, stop_event=self.stop_event,
        )
        self.monitor = TokenMonitor(
            config, self.candidates, self.active, self.fetcher,
            session_logger=self.session_logger, stop_event=self.stop_event,
        )
        self.tracker = PositionTracker(
            config, self.active, self.fetcher, self.order_handler,
            session_logger=self.session_logger, stop_event=self.stop_event,
        )
        self.status_interval = config.get("STATUS_REPORT_INTERVAL_SECONDS", 300)

    def stop(self) -> None:
        if not self.stop_event.is_set():
            logger.info("🛑 Stop requested, shutting down...")
        self.stop_event.set()

    def status_report(self) -> str:
        lines = [
            "📊 *Bot Status Report*",
            f"*Candidates:* {self.candidates.count()}",
            f"*Active trades:* {self.active.count()}",
            f"*Closed trades:* {self.closed.count()}",
            f"*Orders:* {self.order_handler.stats['succeeded']} filled / "
            f"{self.order_handler.stats['failed']} failed / {self.order_handler.queue.qsize()} queued",
        ]
        if isinstance(self.executor, SimulatedTrader):
            summary = self.executor.get_position_performance_summary()
            lines += [
                f"*Paper trades:* {summary['total_trades']} ({summary['winning_trades']} winning)",
                f"*Total PnL:* {summary['total_profit_loss']:.6f} SOL",
            ]
        return "\n".join(lines)

    async def report_status(self) -> None:
        while not self.stop_event.is_set():
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.status_interval)
            except asyncio.TimeoutError:
                report = self.status_report()
                logger.info(report)
                if self.notifier:
                    await asyncio.to_thread(self.notifier.send_markdown, report)

    def install_signal_handlers(self) -> List[int]:
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
                installed.append(sig)
            except NotImplementedError:
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.stop))
        return installed

    def _on_listener_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or self.stop_event.is_set():
            return
        if task.exception() is not None:
            logger.error(f"[WS] Listener crashed: {task.exception()}")
        else:
            logger.error("[WS] Listener stream ended")
        self.stop()

    async def run(self) -> None:
        self.session_logger.start_session()
        try:
            ws = await self.listener.connect()
        except ListenerConnectionError:
            await self.close()
            raise

        installed = self.install_signal_handlers()
        self.order_handler.start()

        listener_task = asyncio.create_task(self.listener.run(ws))
        listener_task.add_done_callback(self._on_listener_done)
        ingest_task = asyncio.create_task(self.monitor.ingest(self.listener.output))
        loop_tasks = [
            asyncio.create_task(self.monitor.run()),
            asyncio.create_task(self.tracker.run()),
        ]
        status_task = asyncio.create_task(self.report_status())
        logger.info("🚀 Pipeline started")

        try:
            await self.stop_event.wait()
        finally:
            self.stop_event.set()

            listener_task.cancel()
            await asyncio.gather(listener_task, return_exceptions=True)
            # a listener cancelled before its first step never reaches its finally
            self.listener.close_output()
            await asyncio.gather(ingest_task, *loop_tasks, return_exceptions=True)
            await self.order_handler.stop()

            status_task.cancel()
            await asyncio.gather(status_task, return_exceptions=True)

            loop = asyncio.get_running_loop()
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.close()
            logger.info(self.status_report())

    async def close(self) -> None:
        self.session_logger.close_all()
        if hasattr(self.executor, "close"):
            await self.executor.close()
        if hasattr(self.fetcher, "close"):
            await self.fetcher.close()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )
    logger.info("🚀 Starting curve sniper bot...")

    load_environment()
    config = load_config()

    async def _run():
        await SniperBot(config).run()

    try:
        asyncio.run(_run())
    except ListenerConnectionError as e:
        logger.critical(f"❌ Could not start the log listener: {e}")
        raise SystemExit(1)
    except KeyboardInterrupt:
        logger.info("❌ Bot stopped by user.")


if __name__ == "__main__":
    main()
