from __future__ import annotations


class MeshChatError(Exception):
    """Base class for client-side errors."""


class AuthError(MeshChatError):
    """The identity provider rejected a register or login attempt."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"authentication rejected: {reason}")


class ValidationError(MeshChatError):
    """Local input rejected before anything is written to the store."""
