"""HTTP API for the agent cooperation engine."""

from .endpoints import router

__all__ = ["router"]
