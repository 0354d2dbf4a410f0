"""Referral engine domain exceptions."""

from enum import Enum


class ValidationReason(str, Enum):
    """Stable keys for business-rule violations."""
    INVALID_REQUEST = "invalid_request"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"
    DUPLICATE_PROGRAM_NAME = "duplicate_program_name"
    PROGRAM_NOT_EDITABLE = "program_not_editable"
    PROGRAM_NOT_WORLDWIDE = "program_not_worldwide"
    PROGRAM_NOT_ACTIVE = "program_not_active"
    PROGRAM_NOT_STARTED = "program_not_started"
    PROGRAM_EXPIRED = "program_expired"
    COMPLETION_LIMIT_REACHED = "completion_limit_reached"
    COUNTRY_NOT_ELIGIBLE = "country_not_eligible"
    MULTIPLE_LINKS_NOT_ALLOWED = "multiple_links_not_allowed"
    DUPLICATE_LINK_NAME = "duplicate_link_name"
    LINK_NOT_UPDATABLE = "link_not_updatable"
    LINK_NOT_CANCELLABLE = "link_not_cancellable"
    LINK_NOT_ACTIVE = "link_not_active"
    USER_BLOCKED = "user_blocked"
    SELF_REFERRAL = "self_referral"
    PROFILE_INCOMPLETE = "profile_incomplete"
    ONBOARDING_WINDOW_ELAPSED = "onboarding_window_elapsed"
    CLAIM_PENDING = "claim_pending"
    CLAIM_COMPLETED = "claim_completed"
    CLAIM_EXPIRED = "claim_expired"
    USAGE_NOT_PENDING = "usage_not_pending"


class ReferralError(Exception):
    """Base exception for referral engine errors."""
    pass


class ValidationError(ReferralError):
    """Raised when a business rule is violated.

    Carries a stable ``reason`` key next to the rendered message so callers
    can branch on the rule without parsing text.
    """

    def __init__(self, reason: ValidationReason, message: str):
        self.reason = reason
        self.message = message
        super().__init__(message)


class NotFoundError(ReferralError):
    """Raised when a requested entity does not exist."""
    pass


class SecurityError(ReferralError):
    """Raised when the acting user may not access an entity."""
    pass


class DataInconsistencyError(ReferralError):
    """Raised when stored data violates an invariant."""
    pass
