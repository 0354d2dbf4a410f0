"""Blocking users from referral participation."""

from referrals.blocks.models import Block
from referrals.blocks.service import BlockService, block_service

__all__ = ["Block", "BlockService", "block_service"]
