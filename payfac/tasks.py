import logging
from datetime import timedelta

from celery import shared_task
from dateutil.parser import isoparse
from django.apps import apps
from django.utils import timezone

from payfac.services.settlement_scheduler import SettlementScheduler
from payfac.services.settlement_service import SettlementService
from payfac.services.payout_batch_service import PayoutBatchService
from payfac.services.reconciliation_service import ReconciliationService
from payfac.services.notification_service import NotificationService


logger = logging.getLogger(__name__)


def _parse_date(value):
    """ISO date string from a task argument, or today when empty"""
    if not value:
        return timezone.localdate()
    return isoparse(value).date()


@shared_task(bind=True, max_retries=2)
def run_daily_settlement_task(self, run_date=None):
    """
    Settle the previous business day for every due sub-merchant

    Scheduled at 02:00. With Celery enabled each sub-merchant is settled in
    its own task.

    Args:
        run_date: ISO date of the run (defaults to today)
    """
    run_date = _parse_date(run_date)
    settlement_date = run_date - timedelta(days=1)

    try:
        logger.info(f"[Task] Running daily settlement for {settlement_date}")
        queued = SettlementScheduler().dispatch_settlements_for_date(settlement_date, today=run_date)
        logger.info(f"[Task] Daily settlement dispatched {queued} sub-merchants")
        return {'settlement_date': settlement_date.isoformat(), 'sub_merchants': queued}

    except Exception as e:
        logger.error(f"[Task] Error running daily settlement: {str(e)}", exc_info=True)
        countdown = 300 * (2 ** self.request.retries)
        logger.warning(
            f"[Task] Retrying daily settlement in {countdown} seconds "
            f"(attempt {self.request.retries + 1}/2)"
        )
        raise self.retry(exc=e, countdown=countdown)


@shared_task(bind=True, max_retries=3)
def settle_sub_merchant_task(self, sub_merchant_id, settlement_date, run_date=None):
    """
    Calculate the settlement of one sub-merchant

    Args:
        sub_merchant_id: SubMerchant ID
        settlement_date: ISO business date being settled
        run_date: ISO date of the run (defaults to the day after settlement_date)

    Returns:
        str: Settlement reference, or None when nothing was settled
    """
    SubMerchant = apps.get_model('payfac', 'SubMerchant')
    settlement_date = isoparse(settlement_date).date()
    today = isoparse(run_date).date() if run_date else None

    try:
        sub_merchant = SubMerchant.objects.get(pk=sub_merchant_id)
        settlement = SettlementService().calculate_settlement_for_merchant(
            sub_merchant, settlement_date, today=today
        )

        if settlement is None:
            logger.info(f"[Task] Nothing to settle for {sub_merchant.merchant_code} on {settlement_date}")
            return None

        logger.info(f"[Task] Created settlement {settlement.reference} for {sub_merchant.merchant_code}")
        return settlement.reference

    except SubMerchant.DoesNotExist:
        logger.error(f"[Task] Sub-merchant {sub_merchant_id} not found")
        raise

    except Exception as e:
        logger.error(
            f"[Task] Error settling sub-merchant {sub_merchant_id} for {settlement_date}: {str(e)}",
            exc_info=True
        )
        countdown = 60 * (2 ** self.request.retries)
        raise self.retry(exc=e, countdown=countdown)


@shared_task(bind=True, max_retries=2)
def process_scheduled_payouts_task(self, run_date=None):
    """
    Send every approved payout that is due (scheduled at 10:00)

    Args:
        run_date: ISO date of the run (defaults to today)
    """
    run_date = _parse_date(run_date)

    try:
        logger.info(f"[Task] Processing scheduled payouts for {run_date}")
        result = PayoutBatchService().process_scheduled_payouts(run_date)
        logger.info(f"[Task] Processed {result.processed} payouts")
        return result.to_dict()

    except Exception as e:
        logger.error(f"[Task] Error processing scheduled payouts: {str(e)}", exc_info=True)
        countdown = 300 * (2 ** self.request.retries)
        raise self.retry(exc=e, countdown=countdown)


@shared_task
def retry_failed_payouts_task():
    """Re-attempt retryable failed payouts (scheduled at 15:00)"""
    try:
        summary = ReconciliationService().retry_failed_payouts()
        logger.info(f"[Task] Retried {summary['attempted']} failed payouts, {summary['succeeded']} succeeded")
        return summary
    except Exception as e:
        logger.error(f"[Task] Error retrying failed payouts: {str(e)}", exc_info=True)
        raise


@shared_task
def reconcile_in_flight_payouts_task():
    """Poll the rails for payouts still in flight (every 30 minutes)"""
    try:
        summary = ReconciliationService().reconcile_in_flight_payouts()
        logger.info(f"[Task] Checked {summary['checked']} in-flight payouts, {summary['updated']} updated")
        return summary
    except Exception as e:
        logger.error(f"[Task] Error reconciling in-flight payouts: {str(e)}", exc_info=True)
        raise


@shared_task
def send_notification_task(kind, sub_merchant_id, payload):
    """
    Deliver a notification queued by NotificationService

    Args:
        kind: Notification kind
        sub_merchant_id: SubMerchant ID (None for operational alerts)
        payload: Notification details
    """
    SubMerchant = apps.get_model('payfac', 'SubMerchant')
    sub_merchant = None

    if sub_merchant_id:
        sub_merchant = SubMerchant.objects.filter(pk=sub_merchant_id).first()
        if sub_merchant is None:
            logger.warning(f"[Task] Sub-merchant {sub_merchant_id} not found for {kind} notification")

    return NotificationService().deliver(kind, sub_merchant, payload)
