"""FastAPI dependency providers.

Engines are cheap, stateless wrappers around the process-wide singletons
(store, blob storage, presence registry, hub), so they are built per request.
The gateway keeps per-session identity and is therefore cached.
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from .admin.service import UserAdminService
from .auth.service import ADMIN_KIND, AccountService, TokenService, ensure_active, lift_expired_ban
from .conversations.service import MembershipEngine
from .errors import AuthenticationError
from .files import BlobStorage
from .gateway.hub import SessionHub, hub
from .gateway.service import SessionGateway
from .messages.pipeline import DeliveryPipeline
from .messages.receipts import ReceiptNotifier
from .messages.service import MessageService
from .presence import presence
from .store import Admin, ChatStore, User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)
admin_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/admin/auth/login", auto_error=False)


def get_store() -> ChatStore:
    return ChatStore.get_instance()


def get_blobs() -> BlobStorage:
    return BlobStorage.get_instance()


def get_hub() -> SessionHub:
    return hub


def get_tokens() -> TokenService:
    return TokenService()


def get_pipeline(store: ChatStore = Depends(get_store)) -> DeliveryPipeline:
    return DeliveryPipeline(store, presence)


def get_receipts(store: ChatStore = Depends(get_store)) -> ReceiptNotifier:
    return ReceiptNotifier(store, presence)


def get_membership(
    store: ChatStore = Depends(get_store),
    pipeline: DeliveryPipeline = Depends(get_pipeline),
    blobs: BlobStorage = Depends(get_blobs),
) -> MembershipEngine:
    return MembershipEngine(store, pipeline, blobs)


def get_messages(store: ChatStore = Depends(get_store)) -> MessageService:
    return MessageService(store)


def get_accounts(
    store: ChatStore = Depends(get_store),
    tokens: TokenService = Depends(get_tokens),
) -> AccountService:
    return AccountService(store, tokens)


def get_user_admin(store: ChatStore = Depends(get_store)) -> UserAdminService:
    return UserAdminService(store)


_gateway: Optional[SessionGateway] = None


def get_gateway() -> SessionGateway:
    """The process-wide gateway, built on first use."""
    global _gateway
    if _gateway is None:
        store = ChatStore.get_instance()
        _gateway = SessionGateway(
            hub,
            presence,
            store,
            DeliveryPipeline(store, presence),
            ReceiptNotifier(store, presence),
        )
    return _gateway


def reset_gateway() -> None:
    global _gateway
    _gateway = None


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    store: ChatStore = Depends(get_store),
    tokens: TokenService = Depends(get_tokens),
) -> User:
    """Resolve the bearer token to an active (not deleted, not banned) user."""
    user_id = tokens.verify_token(token)
    user = await store.get_user(user_id)
    if user is None:
        raise AuthenticationError("Not authorized, user not found for this token")
    await lift_expired_ban(store, user)
    ensure_active(user)
    return user


async def get_current_admin(
    token: Optional[str] = Depends(admin_oauth2_scheme),
    store: ChatStore = Depends(get_store),
    tokens: TokenService = Depends(get_tokens),
) -> Admin:
    admin_id = tokens.verify_token(token, kind=ADMIN_KIND)
    admin = await store.get_admin(admin_id)
    if admin is None:
        raise AuthenticationError("Not authorized, admin not found for this token")
    return admin
