# Filename: token_registry.py

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from models import MemeToken

logger = logging.getLogger("TokenRegistry")


class TokenRegistry:
    """
    Lock-protected map of mint -> MemeToken.

    Every method is atomic on its own. Tokens are copied on the way in and on
    the way out, so callers never share a list with the registry. A get()
    followed by set() can still lose a concurrent write; use update() for
    read-modify-write.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._tokens: Dict[str, MemeToken] = {}

    def get(self, mint: str) -> Tuple[Optional[MemeToken], bool]:
        with self._lock:
            token = self._tokens.get(mint)
            if token is None:
                return None, False
            return token.copy(), True

    def set(self, token: MemeToken) -> MemeToken:
        """Upserts a copy of `token`. The discovery time is stamped only on the first write."""
        stored = token.copy()
        with self._lock:
            existing = self._tokens.get(stored.mint)
            if stored.added_time is None:
                stored.added_time = existing.added_time if existing and existing.added_time else time.time()
            stored.revision = (existing.revision if existing else stored.revision) + 1
            self._tokens[stored.mint] = stored
            return stored.copy()

    def update(self, mint: str, mutator: Callable[[MemeToken], None]) -> Optional[MemeToken]:
        """
        Applies `mutator` to the stored token under the registry lock and
        returns a copy of the result, or None if `mint` is not present.
        The mutator must not block.
        """
        with self._lock:
            existing = self._tokens.get(mint)
            if existing is None:
                return None
            working = existing.copy()
            mutator(working)
            if working.mint != mint:
                raise ValueError(f"[{self.name}] update changed token identity {mint} -> {working.mint}")
            working.revision = existing.revision + 1
            self._tokens[mint] = working
            return working.copy()

    def snapshot(self) -> Dict[str, MemeToken]:
        with self._lock:
            return {mint: token.copy() for mint, token in self._tokens.items()}

    def count(self) -> int:
        with self._lock:
            return len(self._tokens)

    def delete(self, mint: str) -> bool:
        with self._lock:
            return self._tokens.pop(mint, None) is not None

    def delete_all(self) -> None:
        with self._lock:
            self._tokens.clear()
        logger.info(f"[{self.name}] Cleared all tokens")

    def __contains__(self, mint: str) -> bool:
        with self._lock:
            return mint in self._tokens

    def __len__(self) -> int:
        return self.count()
