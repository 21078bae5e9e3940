"""Exception hierarchy used across the indexer."""

from __future__ import annotations


class AgentdexError(Exception):
    """Base class for every error raised by agentdex."""


class ConfigError(AgentdexError):
    """Invalid static configuration (bad address, bad RPC URL). Fatal at startup."""


class RPCError(AgentdexError):
    """JSON-RPC error object or malformed node response."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class DecodeError(AgentdexError):
    """A log matched a registered topic0 but its payload could not be decoded."""
