"""
Settlement Scheduler

Runs the settlement calculation for every active sub-merchant whose cycle is
due on a date. A failure for one sub-merchant is logged and the run moves on
to the next one.
"""
import logging
from datetime import timedelta
from typing import Dict, Any, List

from payfac.models import SubMerchant
from payfac.settings import get_payfac_setting


logger = logging.getLogger(__name__)


class SettlementRunResult:
    """What one settlement run produced"""

    def __init__(self, settlement_date):
        self.settlement_date = settlement_date
        self.created = []
        self.skipped = []
        self.failures = []

    @property
    def created_count(self):
        return len(self.created)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'settlement_date': self.settlement_date.isoformat(),
            'created': [settlement.reference for settlement in self.created],
            'skipped': [str(pk) for pk in self.skipped],
            'failures': self.failures,
        }


class SettlementScheduler:
    """
    Service for the daily settlement run

    Args:
        settlement_service: SettlementService used for each sub-merchant
    """

    def __init__(self, settlement_service=None):
        if settlement_service is None:
            from payfac.services.settlement_service import SettlementService
            settlement_service = SettlementService()
        self.settlement_service = settlement_service

    def get_due_sub_merchants(self, settlement_date) -> List[SubMerchant]:
        """Active sub-merchants whose cycle is due on settlement_date"""
        return [
            sub_merchant
            for sub_merchant in SubMerchant.objects.active()
            if self.settlement_service.should_settle_today(sub_merchant, settlement_date)
        ]

    def run_daily_settlement(self, run_date) -> SettlementRunResult:
        """
        Settle the business day that closed before run_date

        Args:
            run_date: Date the run happens on
        """
        settlement_date = run_date - timedelta(days=1)
        logger.info(f"Daily settlement run on {run_date} for business day {settlement_date}")
        return self.calculate_settlements_for_date(settlement_date, today=run_date)

    def calculate_settlements_for_date(self, settlement_date, today=None) -> SettlementRunResult:
        """
        Calculate settlements for every due sub-merchant, one after another

        Args:
            settlement_date: Business date being settled
            today: Date the run happens on (defaults to settlement_date + 1)

        Returns:
            SettlementRunResult
        """
        result = SettlementRunResult(settlement_date)

        for sub_merchant in self.get_due_sub_merchants(settlement_date):
            try:
                settlement = self.settlement_service.calculate_settlement_for_merchant(
                    sub_merchant, settlement_date, today=today
                )
            except Exception as e:
                logger.error(
                    f"Error settling {sub_merchant.merchant_code} for {settlement_date}: {str(e)}",
                    exc_info=True
                )
                result.failures.append({'sub_merchant': str(sub_merchant.pk), 'error': str(e)})
                continue

            if settlement is None:
                result.skipped.append(sub_merchant.pk)
            else:
                result.created.append(settlement)

        logger.info(
            f"Settlement run for {settlement_date} finished: {len(result.created)} created, "
            f"{len(result.skipped)} skipped, {len(result.failures)} failed"
        )
        return result

    def dispatch_settlements_for_date(self, settlement_date, today=None) -> int:
        """
        Queue one Celery task per due sub-merchant

        The worker pool bounds how many settle at once. Falls back to the
        in-process run when Celery is disabled.

        Returns:
            int: Number of sub-merchants queued (or settled in-process)
        """
        if not get_payfac_setting('USE_CELERY'):
            result = self.calculate_settlements_for_date(settlement_date, today=today)
            return len(result.created) + len(result.skipped) + len(result.failures)

        from payfac.tasks import settle_sub_merchant_task

        due = self.get_due_sub_merchants(settlement_date)
        for sub_merchant in due:
            settle_sub_merchant_task.delay(
                str(sub_merchant.pk),
                settlement_date.isoformat(),
                today.isoformat() if today else None
            )

        logger.info(f"Queued settlement of {len(due)} sub-merchants for {settlement_date}")
        return len(due)
