"""
Chain clients.

Each client exposes only what the swap legs need and raises
ChainCallFailure on any node error.
"""

from .btc import BTCClient
from .evm import EVMClient

__all__ = ["BTCClient", "EVMClient"]
