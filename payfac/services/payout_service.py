"""
Payout Service

Creates payouts (from approved settlements or ad hoc), moves them through
approval and sends them over the transfer rail of their method.

Outcome handling for a single send:
- rail confirmed synchronously: completed, settlement paid
- rail accepted: sent, waiting for confirmation
- rail declined: failed for good (REJECTED)
- rail unavailable: failed, rescheduled until retries run out
- timeout: stays processing with processor status "unknown" until
  reconciliation finds out what happened
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List

from django.core.exceptions import ObjectDoesNotExist
from django.db import transaction as db_transaction
from django.db.models import Count, Sum, Q
from django.utils import timezone

from payfac.models import Payout, SubMerchant, Settlement, DESTINATION_FIELDS, get_missing_destination_fields
from payfac.constants import (
    PAYOUT_METHODS,
    PAYOUT_STATUS_PENDING,
    PAYOUT_STATUS_APPROVED,
    PAYOUT_STATUS_PROCESSING,
    PAYOUT_STATUS_SENT,
    PAYOUT_STATUS_COMPLETED,
    PAYOUT_STATUS_FAILED,
    PAYOUT_FAILURE_PROCESSING_ERROR,
    PAYOUT_FAILURE_REJECTED,
    PAYOUT_DELAY_DAYS,
    PROCESSOR_STATUS_UNKNOWN,
    SETTLEMENT_STATUS_APPROVED,
    NOTIFICATION_PAYOUT_SENT,
    NOTIFICATION_PAYOUT_COMPLETED,
    NOTIFICATION_PAYOUT_FAILED,
)
from payfac.exceptions import (
    InvalidAmount,
    InvalidPayoutDestination,
    InvalidStateTransition,
    PayoutError,
    TransferRailUnavailable,
    TransferTimeout,
    InvalidRailResponse,
)
from payfac.services.fee_service import PayoutFeeCalculator
from payfac.settings import get_payfac_setting
from payfac.utils.money import to_money


logger = logging.getLogger(__name__)


class PayoutService:
    """
    Service for creating, approving and dispatching payouts

    Args:
        rails (dict): Transfer rail per payout method (defaults to the
            configured rails, created on first use)
        notification_service: NotificationService instance
        fee_calculator: PayoutFeeCalculator instance
    """

    def __init__(self, rails=None, notification_service=None, fee_calculator=None):
        if notification_service is None:
            from payfac.services.notification_service import NotificationService
            notification_service = NotificationService()

        self._rails = dict(rails) if rails else {}
        self.notifications = notification_service
        self.fees = fee_calculator or PayoutFeeCalculator()

    def get_rail(self, method):
        """Transfer rail for a payout method"""
        if method not in self._rails:
            from payfac.services.transfer_rails import get_transfer_rail
            self._rails[method] = get_transfer_rail(method)
        return self._rails[method]

    # ==========================================
    # PAYOUT RETRIEVAL
    # ==========================================

    def get_payout(self, payout_id: str) -> Payout:
        """
        Get a payout by ID

        Raises:
            ObjectDoesNotExist: If payout not found
        """
        try:
            return Payout.objects.select_related('sub_merchant', 'settlement', 'batch').get(id=payout_id)
        except ObjectDoesNotExist:
            logger.error(f"Payout {payout_id} not found")
            raise

    def get_payout_by_reference(self, reference: str) -> Payout:
        try:
            return Payout.objects.select_related('sub_merchant', 'settlement', 'batch').get(reference=reference)
        except ObjectDoesNotExist:
            logger.error(f"Payout with reference {reference} not found")
            raise

    def get_payouts_for_sub_merchant(self, sub_merchant: SubMerchant, status: Optional[str] = None) -> List[Payout]:
        queryset = Payout.objects.for_sub_merchant(sub_merchant)
        if status:
            queryset = queryset.filter(status=status)
        return list(queryset)

    def get_pending_payout_summary(self) -> Dict[str, Any]:
        """
        Payouts waiting on an operator or on the next run

        Returns:
            dict: Count and total of pending approval and approved payouts,
            plus a breakdown by method
        """
        queryset = Payout.objects.filter(status__in=[PAYOUT_STATUS_PENDING, PAYOUT_STATUS_APPROVED])
        summary = queryset.aggregate(
            pending_approval_count=Count('id', filter=Q(status=PAYOUT_STATUS_PENDING)),
            pending_approval_amount=Sum('amount', filter=Q(status=PAYOUT_STATUS_PENDING)),
            approved_count=Count('id', filter=Q(status=PAYOUT_STATUS_APPROVED)),
            approved_amount=Sum('amount', filter=Q(status=PAYOUT_STATUS_APPROVED)),
        )
        summary['by_method'] = {
            row['method']: {'count': row['count'], 'total_amount': row['total_amount']}
            for row in queryset.values('method').annotate(count=Count('id'), total_amount=Sum('amount'))
        }
        return summary

    def get_payout_stats(self, sub_merchant=None, today=None) -> Dict[str, Any]:
        """
        Payout totals over all time and for the current month

        Args:
            sub_merchant: Filter by sub-merchant (optional)
            today: Reference date for the monthly figures (defaults to today)
        """
        today = today or timezone.localdate()
        queryset = Payout.objects.all()
        if sub_merchant:
            queryset = queryset.by_sub_merchant(sub_merchant)

        month_start = today.replace(day=1)
        stats = queryset.aggregate(
            total_count=Count('id'),
            completed_count=Count('id', filter=Q(status=PAYOUT_STATUS_COMPLETED)),
            failed_count=Count('id', filter=Q(status=PAYOUT_STATUS_FAILED)),
            in_flight_count=Count('id', filter=Q(status__in=[PAYOUT_STATUS_PROCESSING, PAYOUT_STATUS_SENT])),
            completed_amount=Sum('net_amount', filter=Q(status=PAYOUT_STATUS_COMPLETED)),
            total_fees=Sum('fee', filter=Q(status=PAYOUT_STATUS_COMPLETED)),
            this_month_amount=Sum(
                'net_amount',
                filter=Q(status=PAYOUT_STATUS_COMPLETED, scheduled_date__gte=month_start, scheduled_date__lte=today)
            ),
        )
        stats['by_status'] = list(queryset.summary_by_status())
        return stats

    # ==========================================
    # PAYOUT CREATION
    # ==========================================

    def validate_destination(self, method, destination):
        """
        Raises:
            InvalidPayoutDestination: If a field the method needs is missing
        """
        missing = get_missing_destination_fields(method, destination)
        if missing:
            raise InvalidPayoutDestination(method=method, missing=missing)

    @db_transaction.atomic
    def create_payout(
        self,
        sub_merchant: SubMerchant,
        amount,
        method: str,
        destination: Optional[Dict[str, str]] = None,
        fee=None,
        settlement: Optional[Settlement] = None,
        scheduled_date=None,
        notes: str = '',
        today=None
    ) -> Payout:
        """
        Create a payout

        Args:
            sub_merchant: Recipient
            amount: Gross payout amount (Money or Decimal)
            method: Payout method
            destination (dict): Destination fields (defaults to the sub-merchant's)
            fee: Fee override (defaults to the fee schedule)
            settlement: Settlement being paid out (optional)
            scheduled_date: Date the payout should go out (defaults to today)
            notes: Free text
            today: Current date (defaults to today)

        Returns:
            Payout: pending when the amount needs approval, otherwise approved

        Raises:
            InvalidAmount: If amount <= 0 or the fee is not below the amount
            InvalidPayoutDestination: If the destination is unusable
        """
        if method not in dict(PAYOUT_METHODS):
            raise PayoutError(f"Unknown payout method: {method}")

        amount = to_money(amount)
        if amount.amount <= 0:
            raise InvalidAmount(amount)

        fee = self.fees.calculate_fee(amount, method) if fee is None else to_money(fee)
        if fee.amount < 0 or fee.amount >= amount.amount:
            raise InvalidAmount(f"fee {fee} must be below amount {amount}")

        if destination is None:
            destination = sub_merchant.get_payout_destination()
        self.validate_destination(method, destination)

        today = today or timezone.localdate()
        requires_approval = amount.amount > Decimal(str(get_payfac_setting('PAYOUT_APPROVAL_THRESHOLD')))

        payout = Payout.objects.create(
            sub_merchant=sub_merchant,
            settlement=settlement,
            amount=amount,
            fee=fee,
            net_amount=amount - fee,
            method=method,
            status=PAYOUT_STATUS_PENDING if requires_approval else PAYOUT_STATUS_APPROVED,
            requires_approval=requires_approval,
            scheduled_date=scheduled_date or today,
            notes=notes or '',
            **{name: destination.get(name) or '' for name in DESTINATION_FIELDS}
        )

        logger.info(
            f"Created payout {payout.reference} for {sub_merchant.merchant_code}: "
            f"{payout.amount} via {method} (fee {payout.fee}, {payout.status})"
        )
        return payout

    def get_payout_schedule_date(self, sub_merchant: SubMerchant, today):
        """D+0 pays today, D+n pays n days later, every other cycle the next day"""
        return today + timedelta(days=PAYOUT_DELAY_DAYS.get(sub_merchant.settlement_cycle, 1))

    def create_payout_for_settlement(self, settlement: Settlement, today=None) -> Payout:
        """
        Create the payout for an approved settlement

        Uses the sub-merchant's payout method and destination.
        """
        if settlement.status != SETTLEMENT_STATUS_APPROVED:
            raise InvalidStateTransition(settlement.status, 'payout', obj=settlement.reference)

        sub_merchant = settlement.sub_merchant
        today = today or timezone.localdate()

        return self.create_payout(
            sub_merchant=sub_merchant,
            amount=settlement.net_amount,
            method=sub_merchant.payout_method,
            settlement=settlement,
            scheduled_date=self.get_payout_schedule_date(sub_merchant, today),
            notes=f"Settlement {settlement.reference}",
            today=today
        )

    # ==========================================
    # APPROVAL
    # ==========================================

    @db_transaction.atomic
    def approve_payout(self, payout: Payout, approved_by=None) -> Payout:
        """
        Approve a payout waiting for approval

        Raises:
            InvalidStateTransition: If the payout is not pending
        """
        payout = Payout.objects.select_for_update().get(pk=payout.pk)
        payout.approve(approved_by)
        logger.info(f"Payout {payout.reference} approved by {approved_by}")
        return payout

    @db_transaction.atomic
    def cancel_payout(self, payout: Payout, reason: str = '') -> Payout:
        """
        Cancel a payout waiting for approval

        Raises:
            InvalidStateTransition: If the payout is not pending
        """
        payout = Payout.objects.select_for_update().get(pk=payout.pk)
        payout.cancel(reason)
        logger.info(f"Payout {payout.reference} cancelled: {reason}")
        return payout

    # ==========================================
    # DISPATCH
    # ==========================================

    def get_narration(self, payout: Payout) -> str:
        prefix = get_payfac_setting('PAYOUT_NARRATION_PREFIX')
        if payout.settlement_id:
            return f"{prefix} {payout.reference} for settlement {payout.settlement.reference}"
        return f"{prefix} {payout.reference}"

    def process_single_payout(self, payout: Payout) -> Payout:
        """
        Send an approved payout over its rail

        The payout is moved to processing and committed before the rail is
        called, so a crash mid-call leaves a record reconciliation can pick up.

        Args:
            payout: Approved payout

        Returns:
            Payout: Updated payout

        Raises:
            InvalidStateTransition: If the payout is not approved
            InvalidPayoutDestination: If the destination is unusable (no state change)
        """
        with db_transaction.atomic():
            payout = Payout.objects.select_for_update().select_related('sub_merchant', 'settlement').get(pk=payout.pk)
            if payout.status != PAYOUT_STATUS_APPROVED:
                raise InvalidStateTransition(payout.status, PAYOUT_STATUS_PROCESSING, obj=payout.reference)
            self.validate_destination(payout.method, payout.destination)
            payout.mark_as_processing()

        logger.info(f"Processing payout {payout.reference}: {payout.net_amount} via {payout.method}")
        rail = self.get_rail(payout.method)

        try:
            result = rail.send(
                amount=payout.net_amount.amount,
                currency=str(payout.net_amount.currency),
                destination=payout.destination,
                reference=payout.reference,
                narration=self.get_narration(payout)
            )
        except (TransferTimeout, InvalidRailResponse) as e:
            return self.record_unknown_outcome(payout, str(e))
        except TransferRailUnavailable as e:
            return self.record_failure(payout, PAYOUT_FAILURE_PROCESSING_ERROR, str(e))

        if not result.success:
            return self.record_failure(
                payout, PAYOUT_FAILURE_REJECTED, result.message, retryable=False, processor_response=result.data
            )

        if result.completed:
            with db_transaction.atomic():
                payout.mark_as_completed(
                    processor_status=result.status,
                    processor_response=result.data,
                    processor_reference=result.provider_reference
                )
            return self.on_payout_completed(payout)

        with db_transaction.atomic():
            payout.mark_as_sent(
                processor_reference=result.provider_reference,
                processor_status=result.status,
                processor_response=result.data
            )
        logger.info(f"Payout {payout.reference} sent, processor reference {payout.processor_reference}")
        self.notifications.notify(NOTIFICATION_PAYOUT_SENT, payout.sub_merchant, self._notification_payload(payout))
        return payout

    # ==========================================
    # OUTCOMES
    # ==========================================

    def record_unknown_outcome(self, payout: Payout, message: str) -> Payout:
        """Rail timed out: keep the payout processing until reconciliation learns the outcome"""
        Payout.objects.filter(pk=payout.pk).update(
            processor_status=PROCESSOR_STATUS_UNKNOWN,
            failure_message=message,
            updated_at=timezone.now()
        )
        payout.refresh_from_db()
        logger.warning(f"Outcome of payout {payout.reference} unknown, awaiting reconciliation: {message}")
        return payout

    @db_transaction.atomic
    def record_failure(
        self,
        payout: Payout,
        failure_code: str,
        message: str,
        retryable: bool = True,
        reschedule: bool = True,
        processor_response=None
    ) -> Payout:
        """
        Mark a payout failed and decide whether it gets another attempt

        Retryable failures use up one retry. While retries remain they go back
        to approved for the next run, or stay failed for the retry job when
        reschedule is False. Rejections and exhausted retries are final: the
        settlement is marked payout_failed and the operations team and
        sub-merchant are told.
        """
        payout = Payout.objects.select_for_update().select_related('sub_merchant', 'settlement').get(pk=payout.pk)
        payout.mark_as_failed(failure_code, message, count_retry=retryable, processor_response=processor_response)

        if retryable and payout.can_retry:
            if reschedule:
                payout.approve(payout.approved_by)
            logger.warning(
                f"Payout {payout.reference} failed ({message}), will be retried: "
                f"attempt {payout.retry_count} of {payout.max_retries}"
            )
            return payout

        logger.error(f"Payout {payout.reference} failed permanently: {failure_code} {message}")
        self.on_final_failure(payout)
        return payout

    def on_payout_completed(self, payout: Payout) -> Payout:
        """Mark the settlement paid and tell the sub-merchant"""
        if payout.settlement_id:
            settlement = Settlement.objects.get(pk=payout.settlement_id)
            if settlement.status == SETTLEMENT_STATUS_APPROVED:
                settlement.mark_as_paid()
        logger.info(f"Payout {payout.reference} completed")
        self.notifications.notify(
            NOTIFICATION_PAYOUT_COMPLETED, payout.sub_merchant, self._notification_payload(payout)
        )
        return payout

    def on_final_failure(self, payout: Payout) -> Payout:
        """Mark the settlement payout_failed, alert operations and notify the sub-merchant"""
        if payout.settlement_id:
            settlement = Settlement.objects.get(pk=payout.settlement_id)
            if settlement.status == SETTLEMENT_STATUS_APPROVED:
                settlement.mark_as_payout_failed()

        payload = self._notification_payload(payout)
        self.notifications.alert('Payout failed', payload, sub_merchant=payout.sub_merchant)
        self.notifications.notify(NOTIFICATION_PAYOUT_FAILED, payout.sub_merchant, payload)
        return payout

    @staticmethod
    def _notification_payload(payout: Payout) -> Dict[str, Any]:
        return {
            'reference': payout.reference,
            'amount': str(payout.net_amount.amount),
            'currency': str(payout.net_amount.currency),
            'method': payout.method,
            'status': payout.status,
            'retry_count': payout.retry_count,
            'failure_code': payout.failure_code,
            'failure_message': payout.failure_message,
        }
