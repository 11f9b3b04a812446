from django.conf import settings
from django.db import models
from django.db.models import Count, Q, Sum
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from payfac.models.base import BaseModel, money_field
from payfac.constants import (
    SETTLEMENT_STATUSES,
    SETTLEMENT_STATUS_CALCULATED,
    SETTLEMENT_STATUS_APPROVED,
    SETTLEMENT_STATUS_PAID,
    SETTLEMENT_STATUS_PAYOUT_FAILED,
    SETTLEMENT_STATUS_ON_HOLD,
    SETTLEMENT_TRANSITIONS,
    SETTLEMENT_ITEM_TYPES,
)
from payfac.exceptions import InvalidStateTransition, SettlementError


class SettlementQuerySet(models.QuerySet):
    """Custom QuerySet for Settlement model with optimized queries"""

    def calculated(self):
        """Return settlements waiting for approval"""
        return self.filter(status=SETTLEMENT_STATUS_CALCULATED)

    def approved(self):
        return self.filter(status=SETTLEMENT_STATUS_APPROVED)

    def paid(self):
        return self.filter(status=SETTLEMENT_STATUS_PAID)

    def on_hold(self):
        return self.filter(status=SETTLEMENT_STATUS_ON_HOLD)

    def by_sub_merchant(self, sub_merchant):
        """
        Filter settlements by sub-merchant

        Args:
            sub_merchant: SubMerchant instance

        Returns:
            QuerySet: Filtered settlements
        """
        return self.filter(sub_merchant=sub_merchant)

    def in_date_range(self, start_date=None, end_date=None):
        """
        Filter settlements by settlement date

        Args:
            start_date: First settlement date included (optional)
            end_date: Last settlement date included (optional)

        Returns:
            QuerySet: Filtered settlements
        """
        queryset = self
        if start_date:
            queryset = queryset.filter(settlement_date__gte=start_date)
        if end_date:
            queryset = queryset.filter(settlement_date__lte=end_date)
        return queryset

    def with_full_details(self):
        """Prefetch related data for detail views"""
        return self.select_related('sub_merchant', 'payout', 'approved_by', 'rejected_by')

    def with_statistics(self):
        """Aggregate totals and a count per status over the queryset"""
        return self.aggregate(
            total_count=Count('id'),
            total_gross_sales=Sum('gross_sales'),
            total_fees=Sum('total_fees'),
            total_reserve_held=Sum('reserve_held'),
            total_reserve_released=Sum('reserve_released'),
            total_net_amount=Sum('net_amount'),
            total_transactions=Sum('transaction_count'),
            calculated_count=Count('id', filter=Q(status=SETTLEMENT_STATUS_CALCULATED)),
            approved_count=Count('id', filter=Q(status=SETTLEMENT_STATUS_APPROVED)),
            paid_count=Count('id', filter=Q(status=SETTLEMENT_STATUS_PAID)),
            on_hold_count=Count('id', filter=Q(status=SETTLEMENT_STATUS_ON_HOLD)),
        )


class SettlementManager(models.Manager):
    """Custom Manager for Settlement model"""

    def get_queryset(self):
        """Return custom queryset"""
        return SettlementQuerySet(self.model, using=self._db)

    def calculated(self):
        return self.get_queryset().calculated()

    def approved(self):
        return self.get_queryset().approved()

    def for_sub_merchant(self, sub_merchant):
        """Get all settlements for a specific sub-merchant"""
        return self.get_queryset().by_sub_merchant(sub_merchant)

    def with_full_details(self):
        return self.get_queryset().with_full_details()

    def statistics(self, sub_merchant=None, start_date=None, end_date=None):
        """
        Get settlement statistics

        Args:
            sub_merchant: Filter by sub-merchant (optional)
            start_date: Start date (optional)
            end_date: End date (optional)

        Returns:
            dict: Aggregated statistics
        """
        queryset = self.get_queryset()

        if sub_merchant:
            queryset = queryset.by_sub_merchant(sub_merchant)

        if start_date or end_date:
            queryset = queryset.in_date_range(start_date, end_date)

        return queryset.with_statistics()


class Settlement(BaseModel):
    """
    The net amount owed to a sub-merchant for one settlement period

    Built from the transactions, refunds and lost disputes of the period plus
    reserve movements, with one SettlementItem per contributing row.
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
        related_name='settlements',
        verbose_name=_('Sub-merchant')
    )

    settlement_date = models.DateField(db_index=True, verbose_name=_('Settlement date'))
    period_start = models.DateTimeField(verbose_name=_('Period start'))
    period_end = models.DateTimeField(verbose_name=_('Period end'))

    # ==========================================
    # AMOUNTS
    # ==========================================

    gross_sales = money_field(_('Gross sales'))
    gross_refunds = money_field(_('Gross refunds'))
    gross_disputes = money_field(_('Gross disputes'))
    gross_amount = money_field(_('Gross amount'), help_text=_('Sales minus refunds minus disputes'))

    processor_fees = money_field(_('Processor fees'))
    platform_fees = money_field(_('Platform fees'))
    refund_fees = money_field(_('Refund fees'))
    dispute_fees = money_field(_('Dispute fees'))
    total_fees = money_field(_('Total fees'))

    reserve_held = money_field(_('Reserve held'))
    reserve_released = money_field(_('Reserve released'))

    net_amount = money_field(
        _('Net amount'),
        help_text=_('Gross amount - total fees - reserve held + reserve released')
    )

    transaction_count = models.PositiveIntegerField(default=0, verbose_name=_('Transaction count'))
    refund_count = models.PositiveIntegerField(default=0, verbose_name=_('Refund count'))
    dispute_count = models.PositiveIntegerField(default=0, verbose_name=_('Dispute count'))

    # ==========================================
    # WORKFLOW
    # ==========================================

    status = models.CharField(
        max_length=20,
        choices=SETTLEMENT_STATUSES,
        default=SETTLEMENT_STATUS_CALCULATED,
        db_index=True,
        verbose_name=_('Status')
    )

    payout = models.ForeignKey(
        'payfac.Payout',
        on_delete=models.SET_NULL,
        related_name='+',
        blank=True,
        null=True,
        verbose_name=_('Payout')
    )

    calculated_at = models.DateTimeField(default=timezone.now, verbose_name=_('Calculated at'))
    approved_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Approved at'))
    rejected_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Rejected at'))
    paid_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Paid at'))

    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name='+',
        blank=True,
        null=True,
        verbose_name=_('Approved by')
    )

    rejected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name='+',
        blank=True,
        null=True,
        verbose_name=_('Rejected by')
    )

    adjustment_notes = models.TextField(blank=True, verbose_name=_('Adjustment notes'))

    objects = SettlementManager()

    class Meta:
        verbose_name = _('Settlement')
        verbose_name_plural = _('Settlements')
        ordering = ['-settlement_date', '-created_at']
        indexes = [
            models.Index(fields=['sub_merchant', 'settlement_date']),
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return f"Settlement {self.reference} - {self.net_amount} ({self.get_status_display()})"

    def __repr__(self):
        return (
            f"<Settlement id={self.id} reference={self.reference} "
            f"net_amount={self.net_amount} status={self.status}>"
        )

    def save(self, *args, **kwargs):
        """Generate a reference on first save"""
        if not self.reference:
            from payfac.utils.id_generators import generate_settlement_reference
            self.reference = generate_settlement_reference(self.settlement_date)

        super().save(*args, **kwargs)

    # ==========================================
    # PROPERTIES
    # ==========================================

    @property
    def is_calculated(self):
        return self.status == SETTLEMENT_STATUS_CALCULATED

    @property
    def is_approved(self):
        return self.status == SETTLEMENT_STATUS_APPROVED

    @property
    def is_paid(self):
        return self.status == SETTLEMENT_STATUS_PAID

    # ==========================================
    # STATUS TRANSITIONS
    # ==========================================

    def can_transition_to(self, status):
        return status in SETTLEMENT_TRANSITIONS.get(self.status, ())

    def _transition(self, status, **fields):
        if not self.can_transition_to(status):
            raise InvalidStateTransition(self.status, status, obj=self.reference)
        self.status = status
        for name, value in fields.items():
            setattr(self, name, value)
        self.save(update_fields=['status', 'updated_at', *fields.keys()])
        return self

    def mark_as_approved(self, approved_by=None):
        return self._transition(
            SETTLEMENT_STATUS_APPROVED,
            approved_at=timezone.now(),
            approved_by=approved_by
        )

    def mark_as_on_hold(self, rejected_by=None, reason=''):
        return self._transition(
            SETTLEMENT_STATUS_ON_HOLD,
            rejected_at=timezone.now(),
            rejected_by=rejected_by,
            adjustment_notes=reason or ''
        )

    def mark_as_paid(self):
        return self._transition(SETTLEMENT_STATUS_PAID, paid_at=timezone.now())

    def mark_as_payout_failed(self):
        return self._transition(SETTLEMENT_STATUS_PAYOUT_FAILED)


class SettlementItem(BaseModel):
    """
    One line of a settlement breakdown

    Items are written together with their settlement and never change
    afterwards. Their net contributions add up to the settlement's net amount.
    """

    settlement = models.ForeignKey(
        'payfac.Settlement',
        on_delete=models.CASCADE,
        related_name='items',
        verbose_name=_('Settlement')
    )

    item_type = models.CharField(
        max_length=20,
        choices=SETTLEMENT_ITEM_TYPES,
        db_index=True,
        verbose_name=_('Item type')
    )

    ledger_id = models.CharField(
        max_length=64,
        blank=True,
        verbose_name=_('Ledger row ID'),
        help_text=_('Primary key of the transaction, refund, dispute or reserve')
    )

    reference = models.CharField(max_length=100, blank=True, verbose_name=_('Reference'))
    description = models.CharField(max_length=255, blank=True, verbose_name=_('Description'))

    gross_amount = money_field(_('Gross amount'))
    fee_amount = money_field(_('Fee amount'))
    net_amount = money_field(_('Net amount'), help_text=_('Signed contribution to the settlement net amount'))

    class Meta:
        verbose_name = _('Settlement item')
        verbose_name_plural = _('Settlement items')
        ordering = ['created_at', 'item_type']

    def __str__(self):
        return f"{self.get_item_type_display()} {self.reference} ({self.net_amount})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise SettlementError(_("Settlement items cannot be modified"), settlement_id=self.settlement_id)
        super().save(*args, **kwargs)
