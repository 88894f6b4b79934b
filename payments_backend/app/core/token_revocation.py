"""
Token Revocation checks using Redis.

The auth service blacklists JWT tokens in Redis when users log out or are
blocked. Entries carry a TTL equal to the token lifetime, so Redis expires
them on its own. This module only reads the blacklist.
"""

import logging

logger = logging.getLogger(__name__)

# Redis key prefix for blacklisted tokens
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"


async def is_token_revoked(redis_client, token: str) -> bool:
    """
    Check if a token has been revoked.

    Args:
        redis_client: Redis client
        token: JWT token string to check

    Returns:
        True if token is revoked, False otherwise
    """
    try:
        key = f"{TOKEN_BLACKLIST_PREFIX}{token}"
        exists = await redis_client.exists(key)
        return exists > 0
    except Exception as e:
        # Fail-open: if Redis is down, allow the request (availability over strictness)
        logger.warning("Error checking token revocation: %s", e)
        return False


async def are_user_tokens_revoked(redis_client, user_id: str) -> bool:
    """
    Check if all tokens for a user have been revoked.

    Args:
        redis_client: Redis client
        user_id: User ID to check

    Returns:
        True if all user tokens are revoked, False otherwise
    """
    try:
        key = f"{USER_TOKENS_PREFIX}{user_id}:revoked"
        exists = await redis_client.exists(key)
        return exists > 0
    except Exception as e:
        logger.warning("Error checking user token revocation for %s: %s", user_id, e)
        return False
