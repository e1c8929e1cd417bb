"""Presence Registry: who is online, and on which session.

Holds two inverse mappings, session id -> user id and user id -> session id,
and keeps them consistent. A user connecting a second time takes over the
presence entry (last-session-wins); the older session stays connected but is
no longer associated with the user. There is no multi-device fan-out.

State lives in process memory only and is lost on restart. A multi-process
deployment would back this same interface with a shared key-value store.

Thread Safety:
    Mutated only from the event loop by the Session Gateway's connect and
    disconnect handlers. Not safe for use from other threads.
"""
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Values some clients send instead of omitting the user id
ANONYMOUS_SENTINELS = frozenset({"", "null", "undefined"})


def is_anonymous(user_id: Optional[str]) -> bool:
    """True when *user_id* does not identify anyone."""
    return user_id is None or user_id.strip() in ANONYMOUS_SENTINELS


class PresenceRegistry:
    """Bidirectional session <-> user mapping."""

    def __init__(self) -> None:
        self._user_by_session: Dict[str, str] = {}
        self._session_by_user: Dict[str, str] = {}

    def bind(self, session_id: str, user_id: Optional[str]) -> bool:
        """Associate *session_id* with *user_id*.

        Anonymous ids are ignored. If the user was bound to another session,
        that session's entry is evicted so both maps stay inverse.

        Returns:
            True if the registry changed and the online list should be re-broadcast.
        """
        if is_anonymous(user_id):
            return False
        user_id = user_id.strip()

        previous_session = self._session_by_user.get(user_id)
        if previous_session is not None and previous_session != session_id:
            self._user_by_session.pop(previous_session, None)
            logger.info(f"[Presence] User {user_id} moved from session {previous_session} to {session_id}")

        previous_user = self._user_by_session.get(session_id)
        if previous_user is not None and previous_user != user_id:
            if self._session_by_user.get(previous_user) == session_id:
                del self._session_by_user[previous_user]

        self._user_by_session[session_id] = user_id
        self._session_by_user[user_id] = session_id
        logger.info(f"[Presence] User {user_id} online on session {session_id}")
        return True

    def unbind(self, session_id: str) -> Optional[str]:
        """Remove *session_id* from the registry.

        Returns:
            The user id that went offline, or None if the session was anonymous
            or had already been superseded by a newer session of the same user.
        """
        user_id = self._user_by_session.pop(session_id, None)
        if user_id is None:
            return None
        if self._session_by_user.get(user_id) != session_id:
            return None
        del self._session_by_user[user_id]
        logger.info(f"[Presence] User {user_id} offline (session {session_id})")
        return user_id

    def session_for(self, user_id: Optional[str]) -> Optional[str]:
        """The session id *user_id* is online on, or None."""
        if user_id is None:
            return None
        return self._session_by_user.get(user_id)

    def is_online(self, user_id: Optional[str]) -> bool:
        return self.session_for(user_id) is not None

    def user_for(self, session_id: str) -> Optional[str]:
        return self._user_by_session.get(session_id)

    def online_user_ids(self) -> List[str]:
        return list(self._session_by_user.keys())

    def reset(self) -> None:
        """Forget every binding (for testing)."""
        self._user_by_session.clear()
        self._session_by_user.clear()


# Process-wide registry
presence = PresenceRegistry()
