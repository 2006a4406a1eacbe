"""
FastAPI Dependencies for SpendFlow.

Authentication and access to the application-wide services stored on
``app.state`` by create_app().
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from spendflow.api.auth import AuthService, AuthToken
from spendflow.billing.webhook import WebhookProcessor
from spendflow.core.context import ProcessingContext

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_context(request: Request) -> ProcessingContext:
    return request.app.state.ctx


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def get_webhook_processor(request: Request) -> WebhookProcessor:
    return request.app.state.webhooks


async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth: AuthService = Depends(get_auth_service),
) -> AuthToken:
    """
    Dependency to get the current user's authenticated token.

    Raises HTTPException if token is missing or invalid.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    auth_token = auth.decode_token(credentials.credentials)
    if not auth_token or auth_token.is_expired():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth_token


async def get_current_user_id(
    token: AuthToken = Depends(get_current_user_token),
) -> str:
    return token.user_id
