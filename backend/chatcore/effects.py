"""Effects returned by engine operations.

Engines never touch sockets. Each operation returns an :class:`Outcome`
holding its result plus the notifications it wants emitted; the
``SessionHub`` executes them in order. An optional ``follow_up`` is awaited
only after every effect of the outcome has been emitted, which is how the
delivered-status update is sequenced after the initial broadcast.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Union

from .events import ServerEvent


@dataclass
class RoomBroadcast:
    """Send *payload* to every session subscribed to *room*."""
    room: str
    event: ServerEvent
    payload: dict
    exclude_session: Optional[str] = None


@dataclass
class SessionNotice:
    """Send *payload* to exactly one session."""
    session_id: str
    event: ServerEvent
    payload: dict


@dataclass
class GlobalBroadcast:
    """Send *payload* to every connected session."""
    event: ServerEvent
    payload: dict


Effect = Union[RoomBroadcast, SessionNotice, GlobalBroadcast]


@dataclass
class Outcome:
    result: Any = None
    effects: List[Effect] = field(default_factory=list)
    follow_up: Optional[Callable[[], Awaitable["Outcome"]]] = None

    def absorb(self, other: "Outcome") -> "Outcome":
        """Append *other*'s effects to this outcome and return self."""
        self.effects.extend(other.effects)
        return self
