from __future__ import annotations


class MintdexError(Exception):
    """Base class for every error raised by mintdex."""


class ChainUnavailable(MintdexError):
    """The chain client's RPC call failed outright (network, rate limit, provider error)."""


class PartialReadFailure(MintdexError):
    """A single batched call failed or reverted. Recorded as an absent value, never raised past BatchReader."""

    def __init__(self, address: str, function: str, reason: str) -> None:
        super().__init__(f"{function} on {address} failed: {reason}")
        self.address = address
        self.function = function
        self.reason = reason


class MetadataFetchFailure(MintdexError):
    """Off-chain URI fetch failed or timed out."""


class ValidationError(MintdexError):
    """Malformed request input."""


class NotFound(MintdexError):
    """Valid request, but chain data resolves to nothing."""


class EventDecodeError(MintdexError):
    """A log does not match the expected event layout."""


class ConfigError(MintdexError):
    """Missing or invalid environment configuration."""
