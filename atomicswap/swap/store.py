"""
Swap persistence.

Stores hand out copies: a Swap read from a store can be changed freely and
only becomes visible to others once put() back.
"""

import copy
import json
import os
import logging
import threading
from pathlib import Path
from typing import Optional, Dict, List, Union

from ..core import Swap, SwapStatus, SwapDirection

log = logging.getLogger(__name__)


class SwapStore:
    """Interface: get / put / query."""

    def get(self, swap_id: str) -> Optional[Swap]:
        raise NotImplementedError

    def put(self, swap: Swap):
        raise NotImplementedError

    def query(self, status: Optional[SwapStatus] = None,
              direction: Optional[SwapDirection] = None) -> List[Swap]:
        raise NotImplementedError


class MemorySwapStore(SwapStore):
    """Process-local store."""

    def __init__(self):
        self._swaps: Dict[str, Swap] = {}
        self._lock = threading.Lock()

    def get(self, swap_id: str) -> Optional[Swap]:
        with self._lock:
            swap = self._swaps.get(swap_id)
            return copy.deepcopy(swap) if swap else None

    def put(self, swap: Swap):
        with self._lock:
            swaps = dict(self._swaps)
            swaps[swap.id] = copy.deepcopy(swap)
            # Only commit once the write went through
            self._persist(swaps)
            self._swaps = swaps

    def query(self, status: Optional[SwapStatus] = None,
              direction: Optional[SwapDirection] = None) -> List[Swap]:
        """Matching swaps, newest first."""
        with self._lock:
            matches = [
                copy.deepcopy(s) for s in self._swaps.values()
                if (status is None or s.status == status)
                and (direction is None or s.direction == direction)
            ]
        return sorted(matches, key=lambda s: s.created_at, reverse=True)

    def _persist(self, swaps: Dict[str, Swap]):
        """Hook for subclasses; called with the lock held before a put is committed."""

    def __len__(self) -> int:
        return len(self._swaps)


class JSONSwapStore(MemorySwapStore):
    """
    Store backed by a JSON file.

    The whole table is rewritten on every put through a temp file and
    os.replace(), so a crash never leaves a half-written file. Unrevealed
    secrets are never on disk (Swap only carries a secret once revealed).
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        with open(self.path, "r") as f:
            data = json.load(f)
        self._swaps = {sid: Swap.from_dict(entry) for sid, entry in data.items()}
        log.info(f"Loaded {len(self._swaps)} swaps from {self.path}")

    def _persist(self, swaps: Dict[str, Swap]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {sid: s.to_dict(include_secret=True) for sid, s in swaps.items()}
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            log.error(f"Failed to save swaps to {self.path}: {e}")
            raise


def open_store(path: str = "") -> SwapStore:
    """JSONSwapStore at `path`, or a MemorySwapStore when path is empty."""
    if path:
        return JSONSwapStore(path)
    return MemorySwapStore()
