"""Lookup tables consumed by the referral engine."""

from referrals.lookups.models import BlockReason, Country
from referrals.lookups.service import (
    BlockReasonService,
    CountryService,
    block_reason_service,
    country_service,
)

__all__ = [
    "BlockReason",
    "BlockReasonService",
    "Country",
    "CountryService",
    "block_reason_service",
    "country_service",
]
