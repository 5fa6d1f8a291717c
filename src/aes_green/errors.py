from __future__ import annotations


class CommandError(RuntimeError):
    """User-facing validation failure raised by services and command handlers."""
