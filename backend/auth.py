"""
Bearer token authentication.

``resolve_identity`` is the whole gate: header in, identity out, or an
``AuthError`` subclass. ``get_current_user`` only plugs it into FastAPI.
"""
import logging
from typing import Optional

from fastapi import Request

from database import DocumentStore
from errors import InvalidToken, MissingToken, TokenError, UnknownUser
from schemas import CurrentUser
from security import CredentialCodec

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def resolve_identity(
    authorization: Optional[str], codec: CredentialCodec, store: DocumentStore
) -> CurrentUser:
    """
    Resolve an Authorization header to the user it identifies

    Args:
        authorization: Raw header value, None if absent
        codec: Verifies the token signature and expiry
        store: Source of the current user set

    Returns:
        Identity of the token's user

    Raises:
        MissingToken: No header, or not of the form ``Bearer <token>``
        InvalidToken: Token expired, tampered with or without a subject
        UnknownUser: Token is valid but its user no longer exists
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise MissingToken()
    token = authorization[len(BEARER_PREFIX):].strip()

    try:
        claims = codec.verify_token(token)
    except TokenError as exc:
        logger.debug("Rejected token: %s", exc.message)
        raise InvalidToken() from exc

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise InvalidToken()

    doc = store.read()
    user = next((u for u in doc.users if u.id == user_id), None)
    if user is None:
        logger.info("Token for unknown user id=%s", user_id)
        raise UnknownUser()
    return CurrentUser(id=user.id, username=user.username)


def get_current_user(request: Request) -> CurrentUser:
    """Get current authenticated user"""
    return resolve_identity(
        request.headers.get("Authorization"),
        request.app.state.codec,
        request.app.state.store,
    )
