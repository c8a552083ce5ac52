"""
DiaryFlow Backend — Request Authentication
============================================

What:  FastAPI dependency that resolves the signed-in user for a request.
How:   Sign-in happens at the identity provider in front of this service;
       the gateway forwards the verified user id in the X-User-ID header.
       Every entry and draft is scoped by that id.
"""

import logging
from typing import Optional

from fastapi import Header

from diaryflow.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

MAX_USER_ID_LENGTH = 128


async def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Raises:
        AuthenticationError: header missing, blank or oversized (→ 401)
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AuthenticationError("Please sign in to access your diary")
    if len(user_id) > MAX_USER_ID_LENGTH:
        logger.warning("Rejected oversized X-User-ID header (%d chars)", len(user_id))
        raise AuthenticationError("Invalid user identity")
    return user_id
