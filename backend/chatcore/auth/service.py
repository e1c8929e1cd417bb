"""Authentication: password hashing, JWT issue/verify, signup and login.

Tokens are HS256 JWTs signed with ``secrets.jwt.secret_key``. Their claims:

    sub   user or admin id
    kind  "user" | "admin" (an admin token never authenticates a chat user)
    iat   issued at (epoch seconds)
    exp   expiry, ``auth.token_expire_days`` after issue
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from jose import JWTError, jwt
from passlib.context import CryptContext

from ..config import get_config
from ..errors import AuthenticationError, AuthorizationError, ValidationError
from ..store import Admin, ChatStore, User

logger = logging.getLogger(__name__)

USER_KIND = "user"
ADMIN_KIND = "admin"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def validate_password(password: Optional[str]) -> str:
    minimum = get_config().auth.min_password_length
    if not password or len(password) < minimum:
        raise ValidationError(f"Password must be at least {minimum} characters long.")
    return password


class TokenService:
    """Issues and verifies signed identity tokens."""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None,
                 expire_days: Optional[int] = None) -> None:
        config = get_config()
        self.secret_key = secret_key or config.secrets.jwt.secret_key
        self.algorithm = algorithm or config.secrets.jwt.algorithm
        self.expire_days = expire_days if expire_days is not None else config.auth.token_expire_days

    def issue_token(self, identity: str, kind: str = USER_KIND) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": identity,
            "kind": kind,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(days=self.expire_days)).timestamp()),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: Optional[str], kind: str = USER_KIND) -> str:
        """Return the identity in *token*.

        Raises:
            AuthenticationError: missing, malformed, expired, or of another kind.
        """
        if not token:
            raise AuthenticationError("Not authorized, no token provided")
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug(f"Token verification failed: {e}")
            raise AuthenticationError("Not authorized, invalid or expired token") from e
        if claims.get("kind") != kind or not claims.get("sub"):
            raise AuthenticationError("Not authorized, invalid token")
        return claims["sub"]


def ban_message(user: User) -> str:
    reason = user.banDetails.reason if user.banDetails else ""
    message = f"This account has been banned. Reason: {reason or 'Not specified'}."
    if user.banDetails and user.banDetails.expiresAt:
        message += f" The ban will be lifted on {user.banDetails.expiresAt.date().isoformat()}."
    return message


async def lift_expired_ban(store: ChatStore, user: User) -> User:
    """Clear a ban whose expiry has passed, persisting the change."""
    if user.ban_expired():
        user.isBanned = False
        user.banDetails = None
        await store.save_user(user)
        logger.info(f"Ban on user {user.id} expired and was lifted")
    return user


def ensure_active(user: User) -> None:
    """Reject deactivated or banned accounts."""
    if user.deletedAt is not None:
        raise AuthorizationError("This account has been deactivated and is scheduled for deletion.")
    if user.isBanned:
        raise AuthorizationError(ban_message(user))


class AccountService:
    """Signup and login for chat users and dashboard admins."""

    def __init__(self, store: ChatStore, tokens: TokenService) -> None:
        self._store = store
        self._tokens = tokens

    async def signup(self, full_name: Optional[str], email: Optional[str], password: Optional[str]) -> Tuple[User, str]:
        if not full_name or not full_name.strip() or not email or not password:
            raise ValidationError("Please provide full name, email, and password.")
        validate_password(password)
        user = User(
            fullName=full_name.strip(),
            email=normalize_email(email),
            passwordHash=hash_password(password),
        )
        await self._store.create_user(user)
        logger.info(f"User {user.id} signed up")
        return user, self._tokens.issue_token(user.id)

    async def login(self, email: Optional[str], password: Optional[str]) -> Tuple[User, str]:
        if not email or not password:
            raise ValidationError("Please provide email and password.")
        user = await self._store.get_user_by_email(normalize_email(email))
        if user is None:
            raise AuthenticationError("Invalid credentials.")
        await lift_expired_ban(self._store, user)
        ensure_active(user)
        if not verify_password(password, user.passwordHash):
            raise AuthenticationError("Invalid credentials.")
        return user, self._tokens.issue_token(user.id)

    async def admin_signup(self, full_name: Optional[str], email: Optional[str], password: Optional[str]) -> Tuple[Admin, str]:
        if not full_name or not full_name.strip() or not email or not password:
            raise ValidationError("Please provide full name, email, and password.")
        validate_password(password)
        admin = Admin(
            fullName=full_name.strip(),
            email=normalize_email(email),
            passwordHash=hash_password(password),
        )
        await self._store.create_admin(admin)
        logger.info(f"Admin {admin.id} signed up")
        return admin, self._tokens.issue_token(admin.id, kind=ADMIN_KIND)

    async def admin_login(self, email: Optional[str], password: Optional[str]) -> Tuple[Admin, str]:
        if not email or not password:
            raise ValidationError("Please provide email and password.")
        admin = await self._store.get_admin_by_email(normalize_email(email))
        if admin is None or not verify_password(password, admin.passwordHash):
            raise AuthenticationError("Invalid credentials.")
        return admin, self._tokens.issue_token(admin.id, kind=ADMIN_KIND)
