import asyncio
import base64
import binascii
import json
from typing import Any, Callable, List, Optional

import websockets
from loguru import logger

from models import MemeToken
from pump_fun import PUMP_PROGRAM, build_token, parse_create_instruction

CREATE_MARKER = "Program log: Instruction: Create"
DATA_MARKER = "Program data:"
OVERFLOW_POLICIES = ("block", "drop_oldest")

_STOP = object()


class ListenerConnectionError(Exception):
    """The log stream could not be reached at startup."""


def _dig(obj: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


class PumpFunListener:
    """
    Subscribes to program logs over a Solana websocket and turns pump.fun
    create events into MemeTokens on `output`.

    Reading and decoding run as separate tasks. When the read loop ends
    (transport error or cancellation) a single None is put on `output`
    to mark the end of the stream.
    """

    def __init__(self, uri: str, program_id: str = str(PUMP_PROGRAM), commitment: str = "processed",
                 queue_size: int = 1000, overflow_policy: str = "block", connect_retries: int = 5,
                 retry_delay: float = 1.0, connect: Callable = websockets.connect):
        if overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(f"overflow_policy must be one of {OVERFLOW_POLICIES}, got {overflow_policy!r}")
        self.uri = uri
        self.program_id = program_id
        self.commitment = commitment
        self.overflow_policy = overflow_policy
        self.connect_retries = max(1, connect_retries)
        self.retry_delay = retry_delay
        self._connect = connect
        self.output: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscription_message(self) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self.program_id]},
                {"commitment": self.commitment},
            ],
        }

    async def connect(self):
        """Opens the websocket, retrying with exponential backoff."""
        delay = self.retry_delay
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.connect_retries + 1):
            try:
                return await self._connect(self.uri)
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                last_error = e
                logger.warning(f"[WS] Connection attempt {attempt}/{self.connect_retries} failed: {e}")
                if attempt < self.connect_retries:
                    await asyncio.sleep(delay)
                    delay *= 2
        raise ListenerConnectionError(
            f"could not connect to {self.uri} after {self.connect_retries} attempts: {last_error}"
        )

    async def run(self, ws=None) -> None:
        if ws is None:
            ws = await self.connect()

        raw_queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, self.output.maxsize))
        decoder = asyncio.create_task(self._decode_loop(raw_queue))
        cancelled = False
        try:
            await ws.send(json.dumps(self.subscription_message()))
            logger.info(f"[WS] Listening for new token creations from program: {self.program_id}")
            await self._read_loop(ws, raw_queue)
        except asyncio.CancelledError:
            cancelled = True
            raise
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.error(f"[WS] Failed to send subscription: {e}")
        finally:
            if cancelled:
                decoder.cancel()
            else:
                await raw_queue.put(_STOP)
            await asyncio.gather(decoder, return_exceptions=True)
            try:
                await ws.close()
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"[WS] Error closing websocket: {e}")
            self.close_output()
            logger.info("[WS] Listener stopped")

    async def _read_loop(self, ws, raw_queue: asyncio.Queue) -> None:
        while True:
            try:
                msg = await ws.recv()
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logger.error(f"[WS] Error reading message: {e}")
                return
            await raw_queue.put(msg)

    async def _decode_loop(self, raw_queue: asyncio.Queue) -> None:
        while True:
            msg = await raw_queue.get()
            if msg is _STOP:
                return
            for token in self.handle_message(msg):
                await self._emit(token)

    def handle_message(self, msg) -> List[MemeToken]:
        """Extracts the tokens announced by one logsNotification message."""
        if isinstance(msg, (bytes, bytearray)):
            try:
                msg = msg.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("[WS] Received non UTF-8 binary message")
                return []

        try:
            response = json.loads(msg)
        except ValueError as e:
            logger.error(f"[WS] Error unmarshaling JSON: {e}")
            return []

        if _dig(response, "method") != "logsNotification":
            logger.debug(f"[WS] Received message: {msg}")
            return []

        value = _dig(response, "params", "result", "value")
        logs = _dig(value, "logs")
        if not isinstance(logs, list):
            return []

        lines = [line for line in logs if isinstance(line, str)]
        if not any(CREATE_MARKER in line for line in lines):
            return []

        tokens = []
        for line in lines:
            if DATA_MARKER not in line:
                continue
            parts = line.split(": ", 1)
            if len(parts) < 2:
                continue
            try:
                payload = base64.b64decode(parts[1], validate=True)
            except (binascii.Error, ValueError) as e:
                logger.warning(f"[WS] Failed to decode base64: {e}")
                continue

            parsed = parse_create_instruction(payload)
            if not parsed or not parsed.get("name"):
                continue

            token = build_token(parsed)
            logger.info(f"[WS] New token created: {token.name} ({token.symbol}) mint={token.mint} "
                        f"signature={_dig(value, 'signature')}")
            tokens.append(token)
        return tokens

    async def _emit(self, token: MemeToken) -> None:
        if self.overflow_policy == "block":
            await self.output.put(token)
            return

        while True:
            try:
                self.output.put_nowait(token)
                return
            except asyncio.QueueFull:
                self._drop_oldest()

    def _drop_oldest(self) -> None:
        try:
            dropped = self.output.get_nowait()
        except asyncio.QueueEmpty:
            return
        self.dropped += 1
        if dropped is not None:
            logger.warning(f"[WS] Discovery queue full, dropped {dropped.symbol} ({dropped.mint})")

    def close_output(self) -> None:
        """Puts the end-of-stream marker on `output`. Only the first call has an effect."""
        if self._closed:
            return
        self._closed = True
        while True:
            try:
                self.output.put_nowait(None)
                return
            except asyncio.QueueFull:
                self._drop_oldest()
