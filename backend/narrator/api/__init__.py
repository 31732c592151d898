"""API routes for the narration orchestrator."""

from narrator.api import routes, websocket

__all__ = ["routes", "websocket"]
