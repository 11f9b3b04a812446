"""
Payout Batch Service

Runs the scheduled payouts of a day. Instant transfer and wallet payouts go
out one at a time with a pause between calls, as their rails rate-limit.
Bank transfers are collected into one PayoutBatch per run and submitted in a
single request.
"""
import logging
import time
from collections import OrderedDict
from typing import Dict, Any, List

from django.db import transaction as db_transaction
from django.utils import timezone

from payfac.models import Payout, PayoutBatch
from payfac.constants import (
    PAYOUT_METHOD_BANK_TRANSFER,
    PAYOUT_METHOD_INSTANT_TRANSFER,
    PAYOUT_METHOD_WALLET,
    PAYOUT_STATUS_APPROVED,
    PAYOUT_STATUS_PROCESSING,
    PAYOUT_STATUS_SENT,
    PAYOUT_STATUS_COMPLETED,
    PAYOUT_STATUS_FAILED,
    PAYOUT_FAILURE_BATCH_ERROR,
    PAYOUT_FAILURE_REJECTED,
    PROCESSOR_STATUS_UNKNOWN,
    NOTIFICATION_PAYOUT_SENT,
)
from payfac.exceptions import (
    PayfacError,
    TransferError,
    TransferTimeout,
    InvalidRailResponse,
)
from payfac.settings import get_payfac_setting
from payfac.utils.money import sum_amounts, to_money


logger = logging.getLogger(__name__)

SEQUENTIAL_DELAY_SETTINGS = {
    PAYOUT_METHOD_INSTANT_TRANSFER: 'INSTANT_TRANSFER_DELAY',
    PAYOUT_METHOD_WALLET: 'WALLET_TRANSFER_DELAY',
}


class PayoutRunResult:
    """Counts of one scheduled payout run"""

    def __init__(self):
        self.processed = 0
        self.sent = 0
        self.completed = 0
        self.failed = 0
        self.errors = []
        self.batches = []

    def record(self, payout):
        self.processed += 1
        if payout.status == PAYOUT_STATUS_SENT:
            self.sent += 1
        elif payout.status == PAYOUT_STATUS_COMPLETED:
            self.completed += 1
        elif payout.status in (PAYOUT_STATUS_FAILED, PAYOUT_STATUS_APPROVED):
            self.failed += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processed': self.processed,
            'sent': self.sent,
            'completed': self.completed,
            'failed': self.failed,
            'errors': self.errors,
            'batches': [batch.reference for batch in self.batches],
        }


class PayoutBatchService:
    """
    Service for the scheduled payout run

    Args:
        payout_service: PayoutService used for single payouts, rails and
            outcome handling
        sleep: Callable used to pause between sequential payouts
    """

    def __init__(self, payout_service=None, sleep=time.sleep):
        if payout_service is None:
            from payfac.services.payout_service import PayoutService
            payout_service = PayoutService()
        self.payout_service = payout_service
        self.notifications = payout_service.notifications
        self.sleep = sleep

    def process_scheduled_payouts(self, run_date) -> PayoutRunResult:
        """
        Send every approved payout scheduled on or before run_date

        Args:
            run_date: Date of the run

        Returns:
            PayoutRunResult
        """
        result = PayoutRunResult()
        grouped = OrderedDict()
        for payout in Payout.objects.due(run_date).select_related('sub_merchant', 'settlement'):
            grouped.setdefault(payout.method, []).append(payout)

        logger.info(
            f"Processing scheduled payouts for {run_date}: "
            + (', '.join(f"{len(p)} {m}" for m, p in grouped.items()) or 'none due')
        )

        for method, payouts in grouped.items():
            if method != PAYOUT_METHOD_BANK_TRANSFER:
                self.process_sequentially(payouts, result)
                continue

            try:
                batch = self.process_bank_transfer_batch(payouts, run_date)
            except Exception as e:
                logger.error(f"Error processing {method} batch for {run_date}: {str(e)}", exc_info=True)
                result.errors.append({'reference': f"{method} batch", 'error': str(e)})
                continue

            if batch is not None:
                result.batches.append(batch)
                for payout in batch.payouts.all():
                    result.record(payout)

        logger.info(f"Scheduled payout run for {run_date} finished: {result.to_dict()}")
        return result

    def process_sequentially(self, payouts: List[Payout], result: PayoutRunResult):
        """One payout at a time, pausing between rail calls"""
        delay = 0
        if payouts:
            delay = get_payfac_setting(SEQUENTIAL_DELAY_SETTINGS.get(payouts[0].method, 'INSTANT_TRANSFER_DELAY'))

        for index, payout in enumerate(payouts):
            if index and delay:
                self.sleep(delay)
            try:
                payout = self.payout_service.process_single_payout(payout)
                result.record(payout)
            except Exception as e:
                logger.error(f"Error processing payout {payout.reference}: {str(e)}", exc_info=True)
                result.errors.append({'reference': payout.reference, 'error': str(e)})

    # ==========================================
    # BANK BATCHES
    # ==========================================

    def process_bank_transfer_batch(self, payouts: List[Payout], run_date):
        """
        Submit bank transfer payouts as one batch

        Members with an unusable destination are left out. On batch-level
        success members move to sent, except those the rail rejected
        individually. On batch-level failure every member fails and uses up
        a retry. On timeout everything stays processing for reconciliation.

        Returns:
            PayoutBatch or None if no member had a usable destination
        """
        members = []
        for payout in payouts:
            missing = payout.missing_destination_fields
            if missing:
                logger.warning(
                    f"Leaving payout {payout.reference} out of bank batch: missing {', '.join(missing)}"
                )
                continue
            members.append(payout)

        if not members:
            return None

        with db_transaction.atomic():
            batch = PayoutBatch.objects.create(
                method=PAYOUT_METHOD_BANK_TRANSFER,
                scheduled_date=run_date,
                total_amount=to_money(sum_amounts(p.amount for p in members)),
                total_fees=to_money(sum_amounts(p.fee for p in members)),
                payout_count=len(members),
            )
            locked = {
                p.pk: p for p in Payout.objects.select_for_update().filter(pk__in=[m.pk for m in members])
            }
            members = [locked[m.pk] for m in members]
            for payout in members:
                payout.mark_as_processing(batch=batch)

        transfers = [
            {
                'amount': payout.net_amount.amount,
                'currency': str(payout.net_amount.currency),
                'destination': payout.destination,
                'reference': payout.reference,
                'narration': self.payout_service.get_narration(payout),
            }
            for payout in members
        ]

        rail = self.payout_service.get_rail(PAYOUT_METHOD_BANK_TRANSFER)
        logger.info(f"Submitting batch {batch.reference}: {len(members)} payouts, total {batch.total_amount}")

        try:
            outcome = rail.submit_batch(batch.reference, transfers)
        except (TransferTimeout, InvalidRailResponse) as e:
            logger.warning(f"Outcome of batch {batch.reference} unknown, awaiting reconciliation: {str(e)}")
            Payout.objects.filter(batch=batch, status=PAYOUT_STATUS_PROCESSING).update(
                processor_status=PROCESSOR_STATUS_UNKNOWN,
                updated_at=timezone.now()
            )
            batch.failure_message = str(e)
            batch.save(update_fields=['failure_message', 'updated_at'])
            return batch
        except TransferError as e:
            self._fail_batch(batch, members, str(e), getattr(e, 'response', None))
            return batch

        if not outcome.success:
            self._fail_batch(batch, members, outcome.message or 'Batch rejected by bank rail', outcome.details)
            return batch

        failed_references = outcome.failed_references
        item_messages = {item.get('reference'): item.get('message', '') for item in outcome.failed_items}
        item_references = {
            item.get('reference'): item.get('provider_reference')
            for item in outcome.details.get('items', []) if isinstance(item, dict)
        }
        successful = failed = 0

        for payout in members:
            try:
                if payout.reference in failed_references:
                    self.payout_service.record_failure(
                        payout,
                        PAYOUT_FAILURE_REJECTED,
                        item_messages.get(payout.reference) or 'Rejected in bank batch',
                        retryable=False
                    )
                    failed += 1
                    continue

                with db_transaction.atomic():
                    payout.mark_as_sent(
                        processor_reference=item_references.get(payout.reference) or payout.reference,
                        processor_status=PAYOUT_STATUS_SENT
                    )
                successful += 1
                self.notifications.notify(
                    NOTIFICATION_PAYOUT_SENT,
                    payout.sub_merchant,
                    self.payout_service._notification_payload(payout)
                )
            except PayfacError as e:
                logger.error(f"Error recording batch outcome for payout {payout.reference}: {str(e)}", exc_info=True)
                failed += 1

        batch.record_outcome(successful, failed, processor_response=outcome.details)
        logger.info(f"Batch {batch.reference} {batch.status}: {successful} sent, {failed} failed")
        return batch

    def _fail_batch(self, batch, members, message, details=None):
        """Batch-level failure: every member fails and uses up one retry"""
        logger.error(f"Batch {batch.reference} failed: {message}")

        for payout in members:
            try:
                self.payout_service.record_failure(payout, PAYOUT_FAILURE_BATCH_ERROR, message, reschedule=False)
            except PayfacError as e:
                logger.error(f"Error failing payout {payout.reference}: {str(e)}", exc_info=True)

        batch.record_outcome(0, len(members), processor_response=details, failure_message=message)
        self.notifications.alert(
            'Payout batch failed',
            {'reference': batch.reference, 'payout_count': batch.payout_count, 'error': message}
        )
