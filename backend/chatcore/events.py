"""Names of the realtime events exchanged over the ``/ws`` channel.

Every frame is a JSON object whose ``type`` field holds one of these values.
"""
from enum import Enum


class ClientEvent(str, Enum):
    """Events a client may send.

    Attributes:
        JOIN_CONVERSATION: Subscribe this session to a conversation room.
        LEAVE_CONVERSATION: Unsubscribe this session from a room.
        SEND_MESSAGE: Submit a new chat message.
        MARK_READ: Mark every message in a conversation as read.
        REACT: Toggle/replace the caller's reaction on a message.
        TYPING: Start-typing indicator.
        STOP_TYPING: Stop-typing indicator.
    """
    JOIN_CONVERSATION = "join_conversation"
    LEAVE_CONVERSATION = "leave_conversation"
    SEND_MESSAGE = "send_message"
    MARK_READ = "mark_read"
    REACT = "react"
    TYPING = "typing"
    STOP_TYPING = "stop_typing"


class ServerEvent(str, Enum):
    """Events the server emits.

    Attributes:
        CONNECTED: Sent once to a new socket with its session id.
        CONVERSATION_JOINED: Ack for join_conversation.
        CONVERSATION_LEFT: Ack for leave_conversation.
        ACTIVE_USERS: Full list of online user ids, sent to every session.
        NEW_MESSAGE: A persisted message, sent to the conversation room.
        MESSAGE_DELIVERED: Sender-only delivery acknowledgment.
        MESSAGES_READ: "All read" signal for the other one-to-one participant.
        MESSAGE_UPDATED: Full updated message (reactions, edits, deletes).
        USER_TYPING: Typing relay to the other sessions of a room.
        MESSAGE_ERROR: Error reply to the originating session only.
    """
    CONNECTED = "connected"
    CONVERSATION_JOINED = "conversation_joined"
    CONVERSATION_LEFT = "conversation_left"
    ACTIVE_USERS = "active_users"
    NEW_MESSAGE = "new_message"
    MESSAGE_DELIVERED = "message_delivered"
    MESSAGES_READ = "messages_read"
    MESSAGE_UPDATED = "message_updated"
    USER_TYPING = "user_typing"
    MESSAGE_ERROR = "message_error"
