"""Link request models and search filters."""

from pydantic import BaseModel, Field, field_validator

from referrals.links.models import LinkStatus, LinkUsageStatus
from referrals.schemas import DateRangeFilter


class LinkRequestCreate(BaseModel):
    """Request to create a referral link."""
    program_id: int
    name: str = Field(..., min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=500)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Please enter a link name")
        return v


class LinkRequestUpdate(BaseModel):
    """Request to rename or re-describe an active link."""
    id: int
    name: str = Field(..., min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=500)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Please enter a link name")
        return v


class LinkSearchFilter(DateRangeFilter):
    """Link search criteria. ``user_id`` restricts to one referrer."""
    program_id: int | None = None
    user_id: int | None = None
    statuses: list[LinkStatus] | None = None


class LinkUsageSearchFilter(DateRangeFilter):
    """Usage search criteria. ``user_id`` restricts to one referee."""
    program_id: int | None = None
    link_id: int | None = None
    user_id: int | None = None
    statuses: list[LinkUsageStatus] | None = None
