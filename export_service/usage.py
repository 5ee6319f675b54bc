"""
Daily export quota.

The counter lives on the account as {date, count}. A count is only meaningful
for today's date in the reference timezone; a stale date reads as zero.

commit() is an optimistic read-modify-write: it re-reads the account and
writes count + 1 only if the stored usage is unchanged, retrying on conflict.
Increments are therefore never lost. check_quota() still works on the
snapshot loaded at request start, so two concurrent exports for the same
account can both pass the check; the final count then exceeds the limit by
the number of racing requests.
"""

import logging
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import QuotaExceeded, UsageCommitFailed
from .models import Account, Entitlement, UsageRecord
from .repositories import AccountRepositoryInterface

logger = logging.getLogger(__name__)

COMMIT_MAX_ATTEMPTS = 5


class UsageConflict(Exception):
    """Stored usage changed between read and write."""


class UsageMeter:
    """Checks and records per-account daily exports."""

    def __init__(
        self,
        repository: AccountRepositoryInterface,
        timezone: str = "UTC",
        now: Optional[Callable[[ZoneInfo], datetime]] = None,
    ):
        self._repository = repository
        self._tz = ZoneInfo(timezone)
        self._now = now or (lambda tz: datetime.now(tz))

    def today(self) -> str:
        """Today's date in the reference timezone (YYYY-MM-DD)."""
        return self._now(self._tz).strftime("%Y-%m-%d")

    def current_count(self, account: Account) -> int:
        """Exports already used today by this account snapshot."""
        usage = account.usage
        if usage is None or usage.date != self.today():
            return 0
        return usage.count if isinstance(usage.count, int) and usage.count > 0 else 0

    def check_quota(self, account: Account, entitlement: Entitlement) -> None:
        """
        Raise QuotaExceeded when today's count has reached the plan limit.

        Raises:
            QuotaExceeded: current_count >= export_limit_per_day
        """
        used = self.current_count(account)
        if used >= entitlement.export_limit_per_day:
            raise QuotaExceeded(
                plan=entitlement.plan.value,
                limit=entitlement.export_limit_per_day,
                used=used,
            )

    def commit(self, account_id: str) -> int:
        """
        Record one export for today.

        Must only be called after the PDF was produced.

        Returns:
            The new count for today

        Raises:
            UsageCommitFailed: Store kept changing underneath or the write failed
        """
        try:
            return self._commit_with_retry(account_id)
        except RetryError:
            logger.error(f"Usage commit for {account_id} lost {COMMIT_MAX_ATTEMPTS} races")
            raise UsageCommitFailed("Usage commit conflicted repeatedly")
        except UsageCommitFailed:
            raise
        except Exception as e:
            logger.exception(f"Usage commit for {account_id} failed: {e}")
            raise UsageCommitFailed(str(e))

    @retry(
        retry=retry_if_exception_type(UsageConflict),
        stop=stop_after_attempt(COMMIT_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=0.05, max=0.5),
    )
    def _commit_with_retry(self, account_id: str) -> int:
        account = self._repository.get_account(account_id) or Account(account_id=account_id)
        new_count = self.current_count(account) + 1
        new_usage = UsageRecord(date=self.today(), count=new_count)

        if not self._repository.compare_and_set_usage(account_id, account.usage, new_usage):
            logger.info(f"Usage for {account_id} changed during commit, retrying")
            raise UsageConflict(account_id)

        logger.info(f"Recorded export for {account_id}: {new_usage.date} count={new_count}")
        return new_count
