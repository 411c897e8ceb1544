"""Agent cooperation engine: owned multi-agent workflows with retries and branching."""

__version__ = "1.0.0"
