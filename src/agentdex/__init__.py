"""agentdex: multi-chain indexer for ERC-8004 agent identity, reputation and marketplace events."""

__version__ = "0.1.0"
