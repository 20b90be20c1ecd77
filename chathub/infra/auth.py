"""Bearer credential verification."""

import logging
from typing import Optional

import jwt
from fastapi import HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chathub.infra.config import config

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def verify_credential(token: Optional[str]) -> Optional[str]:
    """
    Verify a bearer token issued by the identity service.

    Args:
        token: Encoded JWT

    Returns:
        The user id carried by the token, or None if the token is missing or invalid
    """
    if not token:
        return None
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.info(f"Invalid bearer token: {e}")
        return None

    # Identity service puts the user id in "id"; accept standard "sub" as well
    user_id = payload.get("id") or payload.get("sub")
    return str(user_id) if user_id is not None else None


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> str:
    """
    Resolve the caller's user id from the Authorization header.

    Raises:
        HTTPException: If the credential is missing or invalid
    """
    user_id = verify_credential(credentials.credentials if credentials else None)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, token failed",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
