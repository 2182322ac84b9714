import logging
from typing import Optional

from database import DocumentStore
from errors import ConflictError, InvalidCredentials, ValidationError
from schemas import AuthResponse, PublicUser, User
from security import CredentialCodec

logger = logging.getLogger(__name__)


def _require_credentials(username: Optional[str], password: Optional[str]) -> None:
    if not username or not password:
        raise ValidationError("username and password required")


class UserService:
    """Registration and password login."""

    def __init__(self, store: DocumentStore, codec: CredentialCodec):
        self._store = store
        self._codec = codec

    def _auth_response(self, user: User) -> AuthResponse:
        token = self._codec.issue_token({"sub": user.id})
        return AuthResponse(
            token=token, user=PublicUser(id=user.id, username=user.username)
        )

    def register(self, username: Optional[str], password: Optional[str]) -> AuthResponse:
        _require_credentials(username, password)
        # Hash outside the lock, bcrypt is the slow part
        password_hash = self._codec.hash_password(password)
        with self._store.transaction() as doc:
            if any(u.username == username for u in doc.users):
                raise ConflictError("username taken")
            user = User(username=username, password_hash=password_hash)
            doc.users.append(user)
        logger.info("Registered user %s id=%s", user.username, user.id)
        return self._auth_response(user)

    def login(self, username: Optional[str], password: Optional[str]) -> AuthResponse:
        _require_credentials(username, password)
        doc = self._store.read()
        user = next((u for u in doc.users if u.username == username), None)
        if user is None or not self._codec.verify_password(password, user.password_hash):
            logger.info("Failed login for %s", username)
            raise InvalidCredentials()
        logger.info("User %s logged in", user.username)
        return self._auth_response(user)
