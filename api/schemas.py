"""Pydantic schemas for API request/response validation."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class TokenExchangeRequest(BaseModel):
    code: str = Field(..., min_length=1)
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = Field(None, min_length=43, max_length=128)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class TokenExchangeResponse(BaseModel):
    """Token payload for server-side callers. The refresh token never leaves the store."""
    success: bool = True
    provider: str
    access_token: str
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None
    scopes: list[str] = Field(default_factory=list)


class ConnectionStatusResponse(BaseModel):
    success: bool = True
    provider: str
    connected: bool
    reconnect_required: bool = False
    credential: Optional[dict[str, Any]] = None


class DisconnectResponse(BaseModel):
    success: bool = True
    provider: str
    status: str = "disconnected"


class RefreshJobResponse(BaseModel):
    success: bool = True
    provider: str
    results: dict[str, Any]
