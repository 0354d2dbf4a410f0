"""Referral links and the claims made against them.

Services live in ``referrals.links.service`` and
``referrals.links.usage_service``; maintenance is exported here because
programs and blocks cascade into it.
"""

from referrals.links.maintenance import LinkMaintenanceService, link_maintenance_service
from referrals.links.models import Link, LinkStatus, LinkUsage, LinkUsageStatus

__all__ = [
    "Link",
    "LinkMaintenanceService",
    "LinkStatus",
    "LinkUsage",
    "LinkUsageStatus",
    "link_maintenance_service",
]
