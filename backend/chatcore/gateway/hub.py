"""Session hub: live WebSocket sessions, room subscriptions and effect delivery.

Each accepted socket gets a server-assigned session id. Rooms are keyed by
conversation id and hold the session ids subscribed to them. The hub is the
only component that writes to sockets; engines describe what to send as
effects and the hub executes them.

Frames are flat JSON objects: ``{"type": <event>, **payload}``.

Thread Safety:
    Designed for a single event loop. NOT thread-safe.

Performance Notes:
    - Broadcasting uses asyncio.gather() for concurrent delivery
    - Sessions whose send fails are dropped during the broadcast
"""
import asyncio
import logging
import uuid
from typing import Dict, List, Optional, Set

from fastapi import WebSocket

from ..effects import Effect, GlobalBroadcast, Outcome, RoomBroadcast, SessionNotice
from ..events import ServerEvent

logger = logging.getLogger(__name__)


def frame(event: ServerEvent, payload: Optional[dict] = None) -> dict:
    return {"type": event.value, **(payload or {})}


class SessionHub:
    """Tracks connected sessions and the rooms they subscribe to.

    Attributes:
        sessions: session_id -> WebSocket for every live connection.
        rooms: conversation_id -> subscribed session ids.
    """

    def __init__(self) -> None:
        self.sessions: Dict[str, WebSocket] = {}
        self.rooms: Dict[str, Set[str]] = {}

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def accept(self, websocket: WebSocket) -> str:
        """Accept *websocket* and return its new session id."""
        await websocket.accept()
        return self.register(websocket)

    def register(self, websocket: WebSocket) -> str:
        session_id = uuid.uuid4().hex
        self.sessions[session_id] = websocket
        logger.info(f"[Hub] Session {session_id} registered ({len(self.sessions)} live)")
        return session_id

    def remove(self, session_id: str) -> bool:
        """Drop a session and all its room subscriptions. Returns False if unknown."""
        if self.sessions.pop(session_id, None) is None:
            return False
        for room_id in list(self.rooms):
            members = self.rooms[room_id]
            members.discard(session_id)
            if not members:
                del self.rooms[room_id]
        logger.info(f"[Hub] Session {session_id} removed ({len(self.sessions)} live)")
        return True

    def is_connected(self, session_id: str) -> bool:
        return session_id in self.sessions

    # =========================================================================
    # Rooms
    # =========================================================================

    def join(self, session_id: str, room_id: str) -> None:
        """Subscribe a session to a room. Joining twice is a no-op."""
        if session_id not in self.sessions:
            return
        self.rooms.setdefault(room_id, set()).add(session_id)

    def leave(self, session_id: str, room_id: str) -> None:
        """Unsubscribe a session from a room. Leaving a room never joined is a no-op."""
        members = self.rooms.get(room_id)
        if not members:
            return
        members.discard(session_id)
        if not members:
            del self.rooms[room_id]

    def room_members(self, room_id: str) -> Set[str]:
        return set(self.rooms.get(room_id, ()))

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, session_id: str, event: ServerEvent, payload: Optional[dict] = None) -> bool:
        """Send one frame to one session. Dead sessions are dropped."""
        websocket = self.sessions.get(session_id)
        if websocket is None:
            return False
        if await self._safe_send(websocket, frame(event, payload)):
            return True
        self._cleanup_sessions([session_id])
        return False

    async def broadcast(
        self,
        room_id: str,
        event: ServerEvent,
        payload: dict,
        exclude_session: Optional[str] = None,
    ) -> None:
        """Send a frame to every session in a room concurrently.

        Args:
            room_id: Room (conversation id) to broadcast to.
            event: Event name placed in the frame's ``type``.
            payload: JSON-serializable frame body.
            exclude_session: Optional session that should not receive it
                (typing indicators skip their originator).
        """
        targets = [s for s in self.rooms.get(room_id, ()) if s != exclude_session]
        await self._deliver(targets, frame(event, payload))

    async def broadcast_all(self, event: ServerEvent, payload: dict) -> None:
        """Send a frame to every connected session."""
        await self._deliver(list(self.sessions), frame(event, payload))

    async def _deliver(self, session_ids: List[str], message: dict) -> None:
        connections = [(sid, self.sessions[sid]) for sid in session_ids if sid in self.sessions]
        if not connections:
            return

        results = await asyncio.gather(
            *[self._safe_send(ws, message) for _, ws in connections],
            return_exceptions=True
        )

        failed = [sid for (sid, _), ok in zip(connections, results) if ok is not True]
        self._cleanup_sessions(failed)

    async def _safe_send(self, websocket: WebSocket, message: dict) -> bool:
        """Send a message to a WebSocket with error handling.

        Returns:
            True if successful, False if the connection failed.
        """
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"[Hub] Failed to send to connection: {e}")
            return False

    def _cleanup_sessions(self, failed_sessions: List[str]) -> None:
        for session_id in failed_sessions:
            if self.remove(session_id):
                logger.debug(f"[Hub] Removed dead session {session_id}")

    # =========================================================================
    # Effects
    # =========================================================================

    async def emit(self, effect: Effect) -> None:
        if isinstance(effect, RoomBroadcast):
            await self.broadcast(effect.room, effect.event, effect.payload, effect.exclude_session)
        elif isinstance(effect, SessionNotice):
            await self.send(effect.session_id, effect.event, effect.payload)
        elif isinstance(effect, GlobalBroadcast):
            await self.broadcast_all(effect.event, effect.payload)
        else:
            raise TypeError(f"Unknown effect: {effect!r}")

    async def execute(self, outcome: Outcome) -> None:
        """Emit an outcome's effects in order, then run its follow-up chain.

        The state persisted by the operation stands regardless of what happens
        here: a failing follow-up is logged and not raised to the caller.
        """
        while outcome is not None:
            for effect in outcome.effects:
                await self.emit(effect)
            if outcome.follow_up is None:
                return
            try:
                outcome = await outcome.follow_up()
            except Exception:
                logger.exception("[Hub] Follow-up failed; persisted state stands")
                return

    def reset(self) -> None:
        """Forget every session and room (for testing)."""
        self.sessions.clear()
        self.rooms.clear()


# Global hub instance
hub = SessionHub()
