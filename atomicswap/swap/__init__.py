"""
Swap coordination.

The coordinator owns swap state, the watcher feeds it chain events.
"""

from .coordinator import SwapCoordinator
from .store import SwapStore, MemorySwapStore, JSONSwapStore
from .watcher import SwapWatcher

__all__ = ["SwapCoordinator", "SwapStore", "MemorySwapStore", "JSONSwapStore", "SwapWatcher"]
