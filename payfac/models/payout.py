from django.conf import settings
from django.db import models
from django.db.models import Count, Sum
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from payfac.models.base import BaseModel, money_field
from payfac.constants import (
    PAYOUT_METHODS,
    PAYOUT_METHOD_BANK_TRANSFER,
    PAYOUT_METHOD_INSTANT_TRANSFER,
    PAYOUT_METHOD_WALLET,
    PAYOUT_STATUSES,
    PAYOUT_STATUS_PENDING,
    PAYOUT_STATUS_APPROVED,
    PAYOUT_STATUS_PROCESSING,
    PAYOUT_STATUS_SENT,
    PAYOUT_STATUS_COMPLETED,
    PAYOUT_STATUS_FAILED,
    PAYOUT_STATUS_CANCELLED,
    PAYOUT_TRANSITIONS,
    PAYOUT_IN_FLIGHT_STATUSES,
    NON_RETRYABLE_FAILURE_CODES,
    BATCH_STATUSES,
    BATCH_STATUS_PROCESSING,
    BATCH_STATUS_COMPLETED,
    BATCH_STATUS_FAILED,
    BATCH_STATUS_PARTIALLY_COMPLETED,
)
from payfac.exceptions import InvalidStateTransition
from payfac.settings import get_payfac_setting


DESTINATION_FIELDS = (
    'bank_code',
    'bank_account_number',
    'bank_account_name',
    'iban',
    'instant_transfer_address',
    'wallet_provider',
    'wallet_number',
)


def get_missing_destination_fields(method, destination):
    """
    Destination fields a payout method needs but the destination lacks

    Bank transfers need an account number and account name, or an IBAN.
    Instant transfers need a recipient address. Wallet payouts need the
    provider and the wallet number.

    Args:
        method (str): Payout method
        destination (dict): Destination fields

    Returns:
        list: Names of the missing fields (empty when the destination is usable)
    """
    destination = destination or {}

    def missing(*names):
        return [name for name in names if not destination.get(name)]

    if method == PAYOUT_METHOD_BANK_TRANSFER:
        if destination.get('iban'):
            return []
        return missing('bank_account_number', 'bank_account_name')
    if method == PAYOUT_METHOD_INSTANT_TRANSFER:
        return missing('instant_transfer_address')
    if method == PAYOUT_METHOD_WALLET:
        return missing('wallet_provider', 'wallet_number')
    return ['method']


def derive_batch_status(successful_count, failed_count):
    """completed when nothing failed, failed when nothing succeeded, else partially_completed"""
    if failed_count == 0:
        return BATCH_STATUS_COMPLETED
    if successful_count == 0:
        return BATCH_STATUS_FAILED
    return BATCH_STATUS_PARTIALLY_COMPLETED


class PayoutQuerySet(models.QuerySet):
    """Custom QuerySet for Payout model"""

    def pending(self):
        return self.filter(status=PAYOUT_STATUS_PENDING)

    def approved(self):
        return self.filter(status=PAYOUT_STATUS_APPROVED)

    def failed(self):
        return self.filter(status=PAYOUT_STATUS_FAILED)

    def in_flight(self):
        """Payouts handed to a rail whose final outcome is not known yet"""
        return self.filter(status__in=PAYOUT_IN_FLIGHT_STATUSES)

    def by_sub_merchant(self, sub_merchant):
        return self.filter(sub_merchant=sub_merchant)

    def due(self, run_date):
        """Approved payouts scheduled on or before run_date, oldest first"""
        return self.approved().filter(scheduled_date__lte=run_date).order_by('scheduled_date', 'created_at')

    def retryable(self):
        """Failed payouts with retries left whose failure was not a rejection"""
        return self.failed().filter(
            retry_count__lt=models.F('max_retries')
        ).exclude(
            failure_code__in=NON_RETRYABLE_FAILURE_CODES
        ).order_by('updated_at')

    def stale_in_flight(self, older_than):
        """In-flight payouts initiated at or before older_than"""
        return self.in_flight().filter(
            initiated_at__lte=older_than
        ).order_by('initiated_at')

    def summary_by_status(self):
        """Count and amount per status"""
        return self.values('status').annotate(
            count=Count('id'),
            total_amount=Sum('amount'),
        ).order_by('status')


class PayoutManager(models.Manager):
    """Custom Manager for Payout model"""

    def get_queryset(self):
        return PayoutQuerySet(self.model, using=self._db)

    def due(self, run_date):
        return self.get_queryset().due(run_date)

    def retryable(self):
        return self.get_queryset().retryable()

    def stale_in_flight(self, older_than):
        return self.get_queryset().stale_in_flight(older_than)

    def for_sub_merchant(self, sub_merchant):
        return self.get_queryset().by_sub_merchant(sub_merchant)

    def by_processor_reference(self, processor_reference):
        """
        Find the payout a rail confirmation refers to

        Looks at the processor reference first and falls back to our own
        payout reference.

        Returns:
            Payout or None
        """
        if not processor_reference:
            return None
        queryset = self.get_queryset()
        return (
            queryset.filter(processor_reference=processor_reference).first()
            or queryset.filter(reference=processor_reference).first()
        )


class Payout(BaseModel):
    """
    A transfer of money to a sub-merchant over one payout method

    See PAYOUT_TRANSITIONS for the allowed status moves. A failed payout can
    go back to approved while it has retries left and was not rejected.
    """

    reference = models.CharField(
        max_length=100,
        unique=True,
        blank=True,
        db_index=True,
        verbose_name=_('Reference')
    )

    sub_merchant = models.ForeignKey(
        'payfac.SubMerchant',
        on_delete=models.PROTECT,
        related_name='payouts',
        verbose_name=_('Sub-merchant')
    )

    settlement = models.ForeignKey(
        'payfac.Settlement',
        on_delete=models.SET_NULL,
        related_name='payouts',
        blank=True,
        null=True,
        verbose_name=_('Settlement')
    )

    amount = money_field(_('Amount'))
    fee = money_field(_('Fee'))
    net_amount = money_field(_('Net amount'), help_text=_('Amount minus fee'))

    method = models.CharField(
        max_length=20,
        choices=PAYOUT_METHODS,
        verbose_name=_('Method')
    )

    # ==========================================
    # DESTINATION
    # ==========================================

    bank_code = models.CharField(max_length=20, blank=True, verbose_name=_('Bank code'))
    bank_account_number = models.CharField(max_length=50, blank=True, verbose_name=_('Bank account number'))
    bank_account_name = models.CharField(max_length=255, blank=True, verbose_name=_('Bank account name'))
    iban = models.CharField(max_length=34, blank=True, verbose_name=_('IBAN'))
    instant_transfer_address = models.CharField(max_length=100, blank=True, verbose_name=_('Instant transfer address'))
    wallet_provider = models.CharField(max_length=50, blank=True, verbose_name=_('Wallet provider'))
    wallet_number = models.CharField(max_length=20, blank=True, verbose_name=_('Wallet number'))

    # ==========================================
    # PROCESSING
    # ==========================================

    status = models.CharField(
        max_length=20,
        choices=PAYOUT_STATUSES,
        default=PAYOUT_STATUS_PENDING,
        db_index=True,
        verbose_name=_('Status')
    )

    scheduled_date = models.DateField(db_index=True, verbose_name=_('Scheduled date'))

    batch = models.ForeignKey(
        'payfac.PayoutBatch',
        on_delete=models.SET_NULL,
        related_name='payouts',
        blank=True,
        null=True,
        verbose_name=_('Batch')
    )

    processor_reference = models.CharField(
        max_length=100,
        blank=True,
        db_index=True,
        verbose_name=_('Processor reference')
    )
    processor_status = models.CharField(max_length=50, blank=True, verbose_name=_('Processor status'))
    processor_response = models.JSONField(blank=True, null=True, verbose_name=_('Processor response'))

    retry_count = models.PositiveSmallIntegerField(default=0, verbose_name=_('Retry count'))
    max_retries = models.PositiveSmallIntegerField(
        default=get_payfac_setting('PAYOUT_MAX_RETRIES'),
        verbose_name=_('Max retries')
    )
    failure_code = models.CharField(max_length=50, blank=True, verbose_name=_('Failure code'))
    failure_message = models.TextField(blank=True, verbose_name=_('Failure message'))

    requires_approval = models.BooleanField(default=False, verbose_name=_('Requires approval'))
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name='+',
        blank=True,
        null=True,
        verbose_name=_('Approved by')
    )
    approved_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Approved at'))
    initiated_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Initiated at'))
    completed_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Completed at'))
    cancelled_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Cancelled at'))

    notes = models.TextField(blank=True, verbose_name=_('Notes'))

    objects = PayoutManager()

    class Meta:
        verbose_name = _('Payout')
        verbose_name_plural = _('Payouts')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'scheduled_date']),
            models.Index(fields=['sub_merchant', 'status']),
        ]

    def __str__(self):
        return f"Payout {self.reference} - {self.amount} ({self.get_status_display()})"

    def __repr__(self):
        return (
            f"<Payout id={self.id} reference={self.reference} "
            f"amount={self.amount} method={self.method} status={self.status}>"
        )

    def save(self, *args, **kwargs):
        """Generate a reference on first save"""
        if not self.reference:
            from payfac.utils.id_generators import generate_payout_reference
            self.reference = generate_payout_reference(self.scheduled_date)

        super().save(*args, **kwargs)

    # ==========================================
    # PROPERTIES
    # ==========================================

    @property
    def destination(self):
        return {name: getattr(self, name) for name in DESTINATION_FIELDS}

    @property
    def missing_destination_fields(self):
        return get_missing_destination_fields(self.method, self.destination)

    @property
    def is_in_flight(self):
        return self.status in PAYOUT_IN_FLIGHT_STATUSES

    @property
    def is_final(self):
        """True once nothing can move the payout any more"""
        if self.status == PAYOUT_STATUS_FAILED:
            return not self.can_retry
        return not PAYOUT_TRANSITIONS.get(self.status)

    @property
    def can_retry(self):
        return (
            self.status == PAYOUT_STATUS_FAILED
            and self.retry_count < self.max_retries
            and self.failure_code not in NON_RETRYABLE_FAILURE_CODES
        )

    # ==========================================
    # STATUS TRANSITIONS
    # ==========================================

    def can_transition_to(self, status):
        if status not in PAYOUT_TRANSITIONS.get(self.status, ()):
            return False
        if self.status == PAYOUT_STATUS_FAILED:
            return self.can_retry
        return True

    def transition_to(self, status, save=True, **fields):
        """
        Move the payout to a new status

        Args:
            status: Target status
            save: Persist the change (only the touched fields are written)
            **fields: Extra field values to set along with the status

        Raises:
            InvalidStateTransition: If the move is not allowed
        """
        if not self.can_transition_to(status):
            raise InvalidStateTransition(self.status, status, obj=self.reference)

        self.status = status
        for name, value in fields.items():
            setattr(self, name, value)

        if save:
            self.save(update_fields=['status', 'updated_at', *fields.keys()])
        return self

    def approve(self, approved_by=None):
        return self.transition_to(
            PAYOUT_STATUS_APPROVED,
            approved_by=approved_by,
            approved_at=timezone.now()
        )

    def cancel(self, reason=''):
        notes = f"{self.notes}\n{reason}".strip() if reason else self.notes
        return self.transition_to(
            PAYOUT_STATUS_CANCELLED,
            cancelled_at=timezone.now(),
            notes=notes
        )

    def mark_as_processing(self, batch=None):
        fields = {'initiated_at': timezone.now()}
        if batch is not None:
            fields['batch'] = batch
        return self.transition_to(PAYOUT_STATUS_PROCESSING, **fields)

    def mark_as_sent(self, processor_reference='', processor_status='', processor_response=None):
        return self.transition_to(
            PAYOUT_STATUS_SENT,
            processor_reference=processor_reference or self.processor_reference,
            processor_status=processor_status,
            processor_response=processor_response
        )

    def mark_as_completed(self, processor_status='completed', processor_response=None, processor_reference=''):
        fields = {'completed_at': timezone.now(), 'processor_status': processor_status}
        if processor_reference:
            fields['processor_reference'] = processor_reference
        if processor_response is not None:
            fields['processor_response'] = processor_response
        return self.transition_to(PAYOUT_STATUS_COMPLETED, **fields)

    def mark_as_failed(self, failure_code, failure_message='', count_retry=True, processor_response=None):
        """
        Move to failed, recording the reason

        Args:
            failure_code: One of the PAYOUT_FAILURE_* codes
            failure_message: Human readable reason
            count_retry: Whether this failure uses up one retry
            processor_response: Raw rail answer (optional)
        """
        fields = {
            'failure_code': failure_code,
            'failure_message': failure_message or '',
            'retry_count': self.retry_count + 1 if count_retry else self.retry_count,
        }
        if processor_response is not None:
            fields['processor_response'] = processor_response
        return self.transition_to(PAYOUT_STATUS_FAILED, **fields)


class PayoutBatch(BaseModel):
    """A group of bank transfer payouts submitted to the bank rail in one call"""

    reference = models.CharField(
        max_length=100,
        unique=True,
        blank=True,
        db_index=True,
        verbose_name=_('Reference')
    )

    method = models.CharField(
        max_length=20,
        choices=PAYOUT_METHODS,
        default=PAYOUT_METHOD_BANK_TRANSFER,
        verbose_name=_('Method')
    )

    scheduled_date = models.DateField(verbose_name=_('Scheduled date'))

    total_amount = money_field(_('Total amount'))
    total_fees = money_field(_('Total fees'))
    payout_count = models.PositiveIntegerField(default=0, verbose_name=_('Payout count'))
    successful_count = models.PositiveIntegerField(default=0, verbose_name=_('Successful count'))
    failed_count = models.PositiveIntegerField(default=0, verbose_name=_('Failed count'))

    status = models.CharField(
        max_length=30,
        choices=BATCH_STATUSES,
        default=BATCH_STATUS_PROCESSING,
        db_index=True,
        verbose_name=_('Status')
    )

    processed_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Processed at'))
    processor_response = models.JSONField(blank=True, null=True, verbose_name=_('Processor response'))
    failure_message = models.TextField(blank=True, verbose_name=_('Failure message'))

    class Meta:
        verbose_name = _('Payout batch')
        verbose_name_plural = _('Payout batches')
        ordering = ['-created_at']

    def __str__(self):
        return f"Batch {self.reference} - {self.payout_count} payouts ({self.get_status_display()})"

    def save(self, *args, **kwargs):
        if not self.reference:
            from payfac.utils.id_generators import generate_batch_reference
            self.reference = generate_batch_reference(self.scheduled_date)

        super().save(*args, **kwargs)

    def record_outcome(self, successful_count, failed_count, processor_response=None, failure_message=''):
        """Store the counts and derive the batch status from them"""
        self.successful_count = successful_count
        self.failed_count = failed_count
        self.status = derive_batch_status(successful_count, failed_count)
        self.processed_at = timezone.now()
        self.processor_response = processor_response
        self.failure_message = failure_message or ''
        self.save()
        return self
