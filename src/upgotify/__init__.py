"""UnifiedPush distributor relaying messages from a Gotify server."""

__version__ = "0.1.0"
