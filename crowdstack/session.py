import logging
from typing import Optional

from fastapi import Header, Request
from jose import jwt
from jose.exceptions import JWTError

from . import config
from .errors import Unauthorized

logger = logging.getLogger(__name__)


def user_id_from_access_token(access_token: str) -> Optional[str]:
    """Return the user id of a hosted-auth session token, or None if it does not verify."""
    try:
        payload = jwt.decode(
            access_token,
            config.AUTH_JWT_SECRET,
            algorithms=["HS256"],
            audience=config.AUTH_JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.info("rejected session token: %s", e)
        return None
    sub = payload.get("sub")
    return sub if isinstance(sub, str) and sub else None


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value:
        return None
    return value.strip()


async def get_current_user_id(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> str:
    access_token = _bearer(authorization) or request.cookies.get(config.SESSION_COOKIE_NAME)
    user_id = user_id_from_access_token(access_token) if access_token else None
    if user_id is None:
        raise Unauthorized()
    return user_id
