"""
Reconciliation Service

Folds asynchronous transfer confirmations back into payout and settlement
state, retries failed payouts and polls rails for payouts whose outcome is
still unknown.
"""
import logging
from datetime import timedelta
from typing import Optional, Dict, Any

from django.db import transaction as db_transaction
from django.utils import timezone

from payfac.models import Payout
from payfac.constants import (
    CONFIRMATION_STATUS_COMPLETED,
    CONFIRMATION_STATUS_FAILED,
    CONFIRMATION_STATUS_RETURNED,
    CONFIRMATION_STATUSES,
    PAYOUT_STATUS_SENT,
    PAYOUT_STATUS_COMPLETED,
    PAYOUT_STATUS_RETURNED,
    PAYOUT_FAILURE_RECONCILIATION,
    PAYOUT_FAILURE_RETURNED,
    PAYOUT_IN_FLIGHT_STATUSES,
)
from payfac.exceptions import PayoutError, TransferError
from payfac.settings import get_payfac_setting


logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Service for confirmations, retries and in-flight polling

    Args:
        payout_service: PayoutService used for rails, retries and outcome
            handling
    """

    def __init__(self, payout_service=None):
        if payout_service is None:
            from payfac.services.payout_service import PayoutService
            payout_service = PayoutService()
        self.payout_service = payout_service
        self.notifications = payout_service.notifications

    # ==========================================
    # CONFIRMATIONS
    # ==========================================

    def confirm_payout_completion(
        self,
        processor_reference: str,
        status: str,
        details: Optional[Dict[str, Any]] = None
    ) -> Optional[Payout]:
        """
        Apply a rail confirmation to its payout

        Only payouts still processing or sent are updated. Anything else is
        logged and ignored, so a confirmation delivered twice has no further
        effect.

        Args:
            processor_reference: The rail's reference (or our payout reference)
            status: completed, failed or returned
            details: Raw confirmation payload (optional)

        Returns:
            Payout or None if no payout matches the reference

        Raises:
            PayoutError: If the status is not a confirmation status
        """
        if status not in dict(CONFIRMATION_STATUSES):
            raise PayoutError(f"Unknown confirmation status: {status}")

        details = details or {}
        returned_early = False
        payout = Payout.objects.by_processor_reference(processor_reference)
        if payout is None:
            logger.warning(f"Confirmation for unknown payout reference {processor_reference}")
            return None

        with db_transaction.atomic():
            payout = Payout.objects.select_for_update().select_related('sub_merchant').get(pk=payout.pk)

            if payout.status not in PAYOUT_IN_FLIGHT_STATUSES:
                logger.warning(
                    f"Ignoring {status} confirmation for payout {payout.reference}: already {payout.status}"
                )
                return payout

            logger.info(f"Confirmation {status} for payout {payout.reference} ({processor_reference})")

            if status == CONFIRMATION_STATUS_COMPLETED:
                payout.mark_as_completed(processor_status=status, processor_response=details)
            elif status == CONFIRMATION_STATUS_RETURNED and payout.status != PAYOUT_STATUS_SENT:
                # Returned before we saw it sent: a final failure
                status = CONFIRMATION_STATUS_FAILED
                returned_early = True
            elif status == CONFIRMATION_STATUS_RETURNED:
                payout.transition_to(
                    PAYOUT_STATUS_RETURNED,
                    processor_status=status,
                    processor_response=details,
                    failure_code=PAYOUT_FAILURE_RETURNED,
                    failure_message=details.get('reason') or details.get('message') or 'Returned by recipient bank'
                )

        if status == CONFIRMATION_STATUS_COMPLETED:
            return self.payout_service.on_payout_completed(payout)

        if status == CONFIRMATION_STATUS_RETURNED:
            logger.error(f"Payout {payout.reference} returned: {payout.failure_message}")
            return self.payout_service.on_final_failure(payout)

        reason = details.get('reason') or details.get('message') or 'Transfer failed'
        payout = self.payout_service.record_failure(
            payout,
            PAYOUT_FAILURE_RETURNED if returned_early else PAYOUT_FAILURE_RECONCILIATION,
            reason,
            retryable=not returned_early,
            reschedule=False,
            processor_response=details
        )
        if payout.can_retry:
            self.notifications.alert(
                'Payout failed, retry pending',
                {'reference': payout.reference, 'retry_count': payout.retry_count, 'reason': reason},
                sub_merchant=payout.sub_merchant
            )
        return payout

    # ==========================================
    # RETRIES
    # ==========================================

    def retry_payout(self, payout: Payout) -> Payout:
        """
        Move a retryable failed payout back to approved and send it again

        Raises:
            InvalidStateTransition: If the payout has no retries left
        """
        with db_transaction.atomic():
            locked = Payout.objects.select_for_update().get(pk=payout.pk)
            locked.approve(locked.approved_by)
        logger.info(f"Retrying payout {locked.reference} (attempt {locked.retry_count + 1})")
        return self.payout_service.process_single_payout(locked)

    def retry_failed_payouts(self) -> Dict[str, int]:
        """
        Re-attempt every retryable failed payout, one at a time

        Returns:
            dict: Counts of attempted, succeeded (sent or completed) and errored payouts
        """
        summary = {'attempted': 0, 'succeeded': 0, 'errors': 0}

        for payout in Payout.objects.retryable():
            summary['attempted'] += 1
            try:
                result = self.retry_payout(payout)
                if result.status in (PAYOUT_STATUS_SENT, PAYOUT_STATUS_COMPLETED):
                    summary['succeeded'] += 1
            except Exception as e:
                summary['errors'] += 1
                logger.error(f"Error retrying payout {payout.reference}: {str(e)}", exc_info=True)

        logger.info(f"Payout retry run finished: {summary}")
        return summary

    # ==========================================
    # POLLING
    # ==========================================

    def reconcile_in_flight_payouts(self, older_than=None) -> Dict[str, int]:
        """
        Ask the rails about payouts stuck in processing or sent

        Definite answers are applied through confirm_payout_completion;
        pending or unknown answers leave the payout alone.

        Args:
            older_than: Only payouts initiated at or before this datetime
                (defaults to now minus RECONCILIATION_STALE_MINUTES)
        """
        if older_than is None:
            older_than = timezone.now() - timedelta(minutes=get_payfac_setting('RECONCILIATION_STALE_MINUTES'))

        summary = {'checked': 0, 'updated': 0, 'errors': 0}

        for payout in Payout.objects.stale_in_flight(older_than):
            summary['checked'] += 1
            reference = payout.processor_reference or payout.reference
            try:
                result = self.payout_service.get_rail(payout.method).check_status(reference)
            except TransferError as e:
                summary['errors'] += 1
                logger.warning(f"Could not check status of payout {payout.reference}: {str(e)}")
                continue

            if result is None or (result.success and not result.completed):
                logger.debug(f"Payout {payout.reference} still pending at the rail")
                continue

            status = CONFIRMATION_STATUS_COMPLETED if result.success else CONFIRMATION_STATUS_FAILED
            try:
                self.confirm_payout_completion(reference, status, result.data or {'message': result.message})
                summary['updated'] += 1
            except Exception as e:
                summary['errors'] += 1
                logger.error(f"Error reconciling payout {payout.reference}: {str(e)}", exc_info=True)

        logger.info(f"In-flight reconciliation finished: {summary}")
        return summary
