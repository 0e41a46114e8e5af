"""Email verification endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request

from standup_sync.api.session_models import (
    MessageResponse,
    SendCodeRequest,
    TokenResponse,
    VerifyCodeRequest,
)

if TYPE_CHECKING:
    from standup_sync.containers import AppContainer

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/verification-codes")
async def send_verification_code(
    body: SendCodeRequest, request: Request
) -> MessageResponse:
    """Email a one-time code; the reply is the same whatever happened."""
    container: AppContainer = request.app.state.container
    message = await container.credential_service.send_code(body.email)
    return MessageResponse(message=message)


@router.post("/verify")
async def verify_email(body: VerifyCodeRequest, request: Request) -> TokenResponse:
    """Exchange a code for an identity token."""
    container: AppContainer = request.app.state.container
    token = await container.credential_service.verify_code(body.email, body.code)
    return TokenResponse(token=token)
