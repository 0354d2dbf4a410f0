"""Program request models and search filters."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from referrals.programs.models import ProgramStatus
from referrals.schemas import PaginationFilter

MAX_REWARD = 2000
MAX_REWARD_POOL = 10_000_000


class ProgramRequestBase(BaseModel):
    """Fields shared by create and update requests."""
    name: str = Field(..., min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=500)
    image_url: str | None = Field(default=None, max_length=2048)
    completion_window_in_days: int | None = Field(default=None, gt=0)
    completion_limit_referee: int | None = Field(default=None, gt=0)
    completion_limit: int | None = Field(default=None, gt=0)
    zlto_reward_referrer: float | None = Field(default=None, gt=0, le=MAX_REWARD)
    zlto_reward_referee: float | None = Field(default=None, gt=0, le=MAX_REWARD)
    zlto_reward_pool: float | None = Field(default=None, gt=0, le=MAX_REWARD_POOL)
    proof_of_personhood_required: bool = False
    pathway_required: bool = False
    multiple_links_allowed: bool = False
    is_default: bool = False
    date_start: datetime
    date_end: datetime | None = None
    country_ids: list[int] | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Please enter a program name")
        return v

    @field_validator("zlto_reward_referrer", "zlto_reward_referee", "zlto_reward_pool")
    @classmethod
    def whole_number(cls, v: float | None) -> float | None:
        if v is not None and v % 1 != 0:
            raise ValueError("Rewards must be whole numbers")
        return v

    @field_validator("country_ids")
    @classmethod
    def distinct_countries(cls, v: list[int] | None) -> list[int] | None:
        if v is None:
            return None
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def check_rules(self):
        if self.date_end is not None and self.date_end < self.date_start:
            raise ValueError("End date cannot be earlier than the start date")

        rewards = (self.zlto_reward_referrer or 0) + (self.zlto_reward_referee or 0)
        if self.zlto_reward_pool is not None and self.zlto_reward_pool < rewards:
            raise ValueError("Reward pool must be at least the total of the referrer + referee rewards")

        if rewards > 0 and self.completion_limit is None and self.completion_limit_referee is None:
            raise ValueError(
                "When rewards are set, add at least one completion cap (per referrer or program-wide)"
            )

        if (
            self.completion_limit is not None
            and self.completion_limit_referee is not None
            and self.completion_limit_referee > self.completion_limit
        ):
            raise ValueError("Per-referrer completion limit cannot exceed the program completion limit")
        return self


class ProgramRequestCreate(ProgramRequestBase):
    """Request to create a program."""
    post_as_active: bool = True


class ProgramRequestUpdate(ProgramRequestBase):
    """Request to update an editable program."""
    id: int


class ProgramSearchFilter(PaginationFilter):
    """Program search criteria."""
    value_contains: str | None = None
    country_ids: list[int] | None = None
    statuses: list[ProgramStatus] | None = None
