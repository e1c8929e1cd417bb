"""Presence Registry: transient session <-> user bindings."""

from .registry import PresenceRegistry, is_anonymous, presence

__all__ = [
    "PresenceRegistry",
    "is_anonymous",
    "presence",
]
