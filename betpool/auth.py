"""
API key authentication for the pool operator and members.

The pool has one operator and a handful of members,
each holding a static key from the environment.  API_KEY_MEMBER<N> belongs
to the member with id N and may only place bets for that member.
"""

from fastapi import Security, HTTPException, status
from fastapi.security import APIKeyHeader
import os
from typing import Dict, Optional
from dotenv import load_dotenv

load_dotenv()

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

ADMIN = "admin"
MEMBER_PREFIX = "member"
MAX_MEMBER_KEYS = 10


def get_valid_api_keys() -> Dict[str, str]:
    """Map each configured key to its holder ("admin" or "member<N>")."""
    keys = {}

    admin_key = os.getenv("API_KEY_ADMIN")
    if admin_key:
        keys[admin_key] = ADMIN

    for i in range(1, MAX_MEMBER_KEYS + 1):
        key = os.getenv(f"API_KEY_MEMBER{i}")
        if key:
            keys[key] = f"{MEMBER_PREFIX}{i}"

    if not keys:
        # Development fallback (never use in production)
        if os.getenv("ENVIRONMENT") == "development":
            keys["dev-key-insecure"] = ADMIN
        else:
            raise ValueError("No API keys configured! Set API_KEY_ADMIN in environment")

    return keys


VALID_API_KEYS = get_valid_api_keys()


async def verify_api_key(api_key: str = Security(API_KEY_HEADER)) -> str:
    """
    Verify the X-API-Key header and return the key holder.

    Usage in FastAPI routes:
        @app.get("/api/leaderboard")
        async def route(user: str = Depends(verify_api_key)):
            ...
    """
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if api_key not in VALID_API_KEYS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return VALID_API_KEYS[api_key]


def is_admin(user: str) -> bool:
    return user == ADMIN


async def verify_admin_api_key(user: str = Security(verify_api_key)) -> str:
    """Operator-only routes: closing weeks, promos, credit limits, overrides."""
    if not is_admin(user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return user


def member_id_for(user: str) -> Optional[int]:
    """Member id bound to a "member<N>" key holder; None for anyone else."""
    if not user.startswith(MEMBER_PREFIX):
        return None
    suffix = user[len(MEMBER_PREFIX):]
    return int(suffix) if suffix.isdigit() else None
