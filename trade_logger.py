"""
Append-only CSV audit trail for monitor, trade and order activity.

Each run of the bot gets its own session directory under LOG_DIR
(session-0, session-1, ...). Inside it every channel is one CSV file.
"""

import csv
import logging
import os
import threading
from typing import Dict, Iterable, Optional, Sequence, TextIO

from models import TokenAnalysis, TokenSnapshot

logger = logging.getLogger("SessionLogger")

SEPARATOR_ROW = ["#"] * 13


class SessionLogError(Exception):
    """Raised when a channel cannot be written."""


class _Channel:
    def __init__(self, handle: TextIO):
        self.handle = handle
        self.writer = csv.writer(handle)
        self.lock = threading.Lock()


class SessionLogger:
    def __init__(self, base_dir: str = "trade-sessions"):
        self.base_dir = base_dir
        self.session_path: Optional[str] = None
        self._channels: Dict[str, _Channel] = {}
        self._lock = threading.Lock()

    def start_session(self) -> str:
        """Creates the next session-N directory and makes it current."""
        os.makedirs(self.base_dir, exist_ok=True)

        highest = -1
        for entry in os.listdir(self.base_dir):
            if not entry.startswith("session-"):
                continue
            if not os.path.isdir(os.path.join(self.base_dir, entry)):
                continue
            suffix = entry[len("session-"):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))

        path = os.path.join(self.base_dir, f"session-{highest + 1}")
        os.makedirs(path, exist_ok=True)
        self.session_path = path
        logger.info(f"[SESSION] Logger initialized at session: {path}")
        return path

    def _filename(self, name: str) -> str:
        if self.session_path is None:
            raise SessionLogError("no active session, call start_session() first")
        return os.path.join(self.session_path, name)

    def open_channel(self, name: str) -> None:
        filename = self._filename(name)
        with self._lock:
            if name in self._channels:
                return
            try:
                handle = open(filename, "a", newline="")
            except OSError as e:
                raise SessionLogError(f"failed to create file {filename}: {e}") from e
            self._channels[name] = _Channel(handle)

    def _channel(self, name: str) -> _Channel:
        with self._lock:
            channel = self._channels.get(name)
        if channel is None:
            raise SessionLogError(f"logger for channel {name!r} is not initialized")
        return channel

    def append(self, name: str, record: Sequence[object]) -> None:
        channel = self._channel(name)
        with channel.lock:
            try:
                channel.writer.writerow([str(cell) for cell in record])
                channel.handle.flush()
            except (OSError, ValueError) as e:
                raise SessionLogError(f"error writing record to {name}: {e}") from e

    def try_append(self, name: str, record: Sequence[object]) -> bool:
        """Like append(), but logs write failures instead of raising."""
        try:
            self.append(name, record)
            return True
        except SessionLogError as e:
            logger.error(f"[SESSION] logger write error: {e}")
            return False

    def flush(self, name: str) -> None:
        channel = self._channel(name)
        with channel.lock:
            try:
                channel.handle.flush()
            except (OSError, ValueError) as e:
                raise SessionLogError(f"error flushing {name}: {e}") from e

    def clear(self, name: str) -> None:
        """Truncates a channel's file."""
        channel = self._channel(name)
        with channel.lock:
            try:
                channel.handle.flush()
                channel.handle.truncate(0)
                channel.handle.seek(0)
            except (OSError, ValueError) as e:
                raise SessionLogError(f"failed to clear {name}: {e}") from e

    def close_channel(self, name: str) -> None:
        with self._lock:
            channel = self._channels.pop(name, None)
        if channel is None:
            return
        with channel.lock:
            try:
                channel.handle.close()
            except OSError as e:
                raise SessionLogError(f"error closing {name}: {e}") from e

    def close_all(self) -> None:
        with self._lock:
            channels = list(self._channels.items())
            self._channels.clear()
        for name, channel in channels:
            with channel.lock:
                try:
                    channel.handle.close()
                except OSError as e:
                    logger.error(f"[SESSION] Failed to close {name}: {e}")

    def is_open(self, name: str) -> bool:
        with self._lock:
            return name in self._channels


def format_snapshots(history: Iterable[TokenSnapshot]) -> str:
    lines = [f"  {i}: {snap}" for i, snap in enumerate(history)]
    return "[\n" + "".join(line + "\n" for line in lines) + "]"


def format_analyses(analyses: Iterable[TokenAnalysis]) -> str:
    lines = [f"  {i}: {item}" for i, item in enumerate(analyses)]
    return "[\n" + "".join(line + "\n" for line in lines) + "]"
