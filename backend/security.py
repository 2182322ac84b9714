from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config import Settings
from errors import ExpiredToken, InvalidSignature, ValidationError


class CredentialCodec:
    """
    Password hashing and bearer token signing.

    Passwords go through bcrypt (salted per call, cost taken from
    ``BCRYPT_ROUNDS``); tokens are HS256 JWTs signed with ``SECRET_KEY``.
    """

    def __init__(self, settings: Settings):
        self._secret_key = settings.SECRET_KEY
        self._algorithm = settings.ALGORITHM
        self._default_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self._pwd_context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=settings.BCRYPT_ROUNDS,
        )

    def hash_password(self, password: str) -> str:
        try:
            return self._pwd_context.hash(password)
        except ValueError as exc:
            # bcrypt refuses NUL bytes (passlib PasswordValueError)
            raise ValidationError("invalid password") from exc

    def verify_password(self, plain_password: str, password_hash: str) -> bool:
        """
        Verify password

        Args:
            plain_password: Plain text password
            password_hash: Stored bcrypt digest

        Returns:
            Whether the password matches; an unreadable digest never matches
        """
        try:
            return self._pwd_context.verify(plain_password, password_hash)
        except (ValueError, TypeError):
            return False

    def issue_token(
        self, claims: Dict[str, Any], ttl: Optional[timedelta] = None
    ) -> str:
        """
        Create access token

        Args:
            claims: Token data, at least ``sub`` (the user id)
            ttl: Lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

        Returns:
            Signed token
        """
        now = datetime.now(timezone.utc)
        to_encode = claims.copy()
        to_encode.update({"iat": now, "exp": now + (ttl or self._default_ttl)})
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Verify token

        Args:
            token: Bearer token

        Returns:
            Claims contained in the token

        Raises:
            ExpiredToken: The token is past its expiry
            InvalidSignature: The token is malformed or was not signed by us
        """
        try:
            return jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise ExpiredToken() from exc
        except JWTError as exc:
            raise InvalidSignature() from exc
