"""Agent orchestration core: provider failover, confirmations and conversation state."""

__version__ = "0.1.0"
