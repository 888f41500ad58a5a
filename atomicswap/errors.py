"""
Error kinds for the atomic swap core.

Local validation errors (InvalidSecret, InsufficientFunds, ...) are raised
before any state is touched. ChainCallFailure wraps node/RPC errors and is
retryable by the caller.
"""


class SwapError(Exception):
    """Base class for all swap core errors."""
    retryable = False


class InvalidSecret(SwapError, ValueError):
    """Secret has the wrong length or does not match the hashlock."""


class InsufficientFunds(SwapError, ValueError):
    """Inputs cannot cover amount + fee (or output would be dust)."""


class TimeoutNotReached(SwapError):
    """Refund attempted before the timelock expired."""
    retryable = True


class AlreadySettled(SwapError):
    """Claim/refund (or any transition) on an already terminal record."""


class InvalidTransition(SwapError):
    """Transition not allowed from the current swap status."""


class ArtifactMissing(SwapError):
    """Compiled escrow contract artifact is not available."""


class ChainCallFailure(SwapError, RuntimeError):
    """Network or RPC error talking to a chain node."""
    retryable = True


class SwapNotFound(SwapError, KeyError):
    """No swap record with the given id."""


class NotAuthorized(SwapError, PermissionError):
    """Caller is not allowed to perform this escrow operation."""
