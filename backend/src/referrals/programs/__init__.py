"""Referral programs: campaigns with caps, rewards and country eligibility."""

from referrals.programs.models import Program, ProgramStatus
from referrals.programs.service import ProgramService, program_service

__all__ = ["Program", "ProgramStatus", "ProgramService", "program_service"]
