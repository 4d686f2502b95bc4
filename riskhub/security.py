"""Administrator gate for the provisioning and import routes."""
from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from riskhub.config import Settings, get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    expected = settings.admin_api_token
    if not expected:
        logger.warning("Administrator request rejected: ADMIN_API_TOKEN is not configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Administrator access is not configured.",
        )

    token = credentials.credentials if credentials else ""
    if not token or not secrets.compare_digest(token, expected):
        logger.warning("Administrator request rejected: invalid bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid administrator token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token
