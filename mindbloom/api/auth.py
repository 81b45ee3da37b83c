"""API authentication using bearer tokens mapped to user ids"""
import os
import logging
from typing import Dict
from fastapi import HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from mindbloom.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_api_keys() -> Dict[str, str]:
    """
    Load token -> user id pairs from the API_KEYS environment variable

    Format: "token1:user-1,token2:user-2"
    """
    api_keys_str = os.getenv("API_KEYS", "")
    if not api_keys_str:
        logger.warning("No API_KEYS configured in environment")
        return {}

    keys = {}
    for pair in api_keys_str.split(","):
        token, sep, user_id = pair.strip().partition(":")
        if sep and token and user_id:
            keys[token.strip()] = user_id.strip()
        elif pair.strip():
            logger.warning("Ignoring malformed API_KEYS entry (expected token:user_id)")
    return keys


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(security)
) -> str:
    """
    Resolve the calling user from the Authorization header

    Raises:
        HTTPException: 503 when no keys are configured
        AuthenticationError: unknown token (401)
    """
    token = credentials.credentials
    valid_keys = get_api_keys()

    if not valid_keys:
        logger.error("No API keys configured - rejecting all requests")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API authentication not configured"
        )

    user_id = valid_keys.get(token)
    if user_id is None:
        logger.warning(f"Invalid API key attempt: {token[:10]}...")
        raise AuthenticationError(message="Invalid API key", operation="get_current_user_id")

    logger.debug(f"API key validated for user {user_id}")
    return user_id
