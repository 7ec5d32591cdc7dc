"""agentflow - multi-agent chain execution engine."""

__version__ = "0.1.0"
