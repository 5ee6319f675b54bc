"""
Plan entitlements.

Maps an account to its export rules. Pure and total: any stored plan value,
including garbage, resolves to one of the three known shapes.
"""

from typing import Iterable, Optional

from .models import Account, Entitlement, Plan

# Paid and admin plans are not limited in practice
UNLIMITED_EXPORTS = 999
FREE_EXPORTS_PER_DAY = 1

_ENTITLEMENTS = {
    Plan.ADMIN: Entitlement(plan=Plan.ADMIN, export_limit_per_day=UNLIMITED_EXPORTS, watermark_enabled=False),
    Plan.PAID: Entitlement(plan=Plan.PAID, export_limit_per_day=UNLIMITED_EXPORTS, watermark_enabled=False),
    Plan.FREE: Entitlement(plan=Plan.FREE, export_limit_per_day=FREE_EXPORTS_PER_DAY, watermark_enabled=True),
}


def parse_plan(value) -> Plan:
    """Parse a stored plan value, degrading anything unrecognised to FREE."""
    if isinstance(value, Plan):
        return value
    if not isinstance(value, str):
        return Plan.FREE
    try:
        return Plan(value.strip().upper())
    except ValueError:
        return Plan.FREE


class EntitlementResolver:
    """Resolves export rules for an account."""

    def __init__(self, admin_emails: Iterable[str] = ()):
        self._admin_emails = frozenset(e.strip().lower() for e in admin_emails if e and e.strip())

    def is_allow_listed(self, email: Optional[str]) -> bool:
        if not email or not isinstance(email, str):
            return False
        return email.strip().lower() in self._admin_emails

    def resolve(self, account: Account, caller_email: Optional[str] = None) -> Entitlement:
        """
        Resolve an account's entitlement.

        Admin plan, the per-account admin override and an allow-listed
        caller e-mail all get admin rules. Only the verified e-mail from the
        identity token counts; the e-mail stored on the account is written by
        the client and is never consulted.
        """
        if account.is_admin_override is True or self.is_allow_listed(caller_email):
            return _ENTITLEMENTS[Plan.ADMIN]
        return _ENTITLEMENTS[parse_plan(account.plan)]
