"""Block request models."""

from pydantic import BaseModel, Field


class BlockRequest(BaseModel):
    """Request to block a user from referrals."""
    user_id: int
    reason_id: int
    comment: str | None = Field(default=None, max_length=500)
    cancel_links: bool = False


class UnblockRequest(BaseModel):
    """Request to lift a user's active block."""
    user_id: int
    comment: str | None = Field(default=None, max_length=500)
