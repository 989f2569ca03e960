"""OAuth token models."""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field


class TokenResponseMapping(BaseModel):
    """Dot-separated paths locating token fields in a provider response."""
    access_token: str = Field(..., description='e.g. "authed_user.access_token"')
    token_type: Optional[str] = None
    scope: Optional[str] = None
    expires_in: Optional[str] = None
    refresh_token: Optional[str] = None


class TokenRecord(BaseModel):
    """Canonical OAuth token. Timestamps are epoch milliseconds."""
    access_token: str
    token_type: str = "Bearer"
    scope: Optional[str] = None
    expires_in: Optional[Union[int, float]] = None
    expires_at: Optional[Union[int, float]] = None
    refresh_token: Optional[str] = None
    obtained_at: int

    model_config = {"frozen": True}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def is_expired(self, now_ms: int, skew_ms: int = 0) -> bool:
        if self.expires_at is None:
            return False
        return now_ms + skew_ms >= self.expires_at
