from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from payfac.models.base import BaseModel, money_field, sub_merchant_field, settlement_claim_field
from payfac.constants import (
    TRANSACTION_STATUSES,
    TRANSACTION_STATUS_AUTHORIZED,
    TRANSACTION_STATUS_CAPTURED,
    PAYMENT_METHODS,
    PAYMENT_METHOD_CARD,
)


class LedgerQuerySet(models.QuerySet):
    """Shared filters for ledger rows that settle into a Settlement"""

    def for_sub_merchant(self, sub_merchant):
        return self.filter(sub_merchant=sub_merchant)

    def unsettled(self):
        """Rows no settlement has claimed yet"""
        return self.filter(settlement__isnull=True)

    def claim(self, settlement, ids):
        """
        Attach unclaimed rows to a settlement

        The update only touches rows whose settlement is still null, so the
        returned count is lower than len(ids) when another run got there first.

        Args:
            settlement: Settlement claiming the rows
            ids: Primary keys to claim

        Returns:
            int: Number of rows claimed
        """
        return self.filter(pk__in=ids, settlement__isnull=True).update(
            settlement=settlement,
            settled_at=timezone.now()
        )

    def release(self, settlement):
        """Detach every row claimed by the settlement"""
        return self.filter(settlement=settlement).update(settlement=None, settled_at=None)


class TransactionQuerySet(LedgerQuerySet):
    """Custom QuerySet for Transaction model"""

    def captured(self):
        return self.filter(status=TRANSACTION_STATUS_CAPTURED)

    def settleable(self, sub_merchant, start, end):
        """
        Captured, unsettled transactions captured within [start, end]

        Returns:
            QuerySet: Transactions ordered by capture time
        """
        return self.for_sub_merchant(sub_merchant).captured().unsettled().filter(
            captured_at__gte=start,
            captured_at__lte=end
        ).order_by('captured_at', 'reference')


class LedgerManager(models.Manager):
    """Manager for ledger models, backed by their LedgerQuerySet subclass"""
    queryset_class = LedgerQuerySet

    def get_queryset(self):
        return self.queryset_class(self.model, using=self._db)

    def settleable(self, sub_merchant, start, end):
        return self.get_queryset().settleable(sub_merchant, start, end)

    def claim(self, settlement, ids):
        return self.get_queryset().claim(settlement, ids)

    def release(self, settlement):
        return self.get_queryset().release(settlement)


class TransactionManager(LedgerManager):
    """Custom Manager for Transaction model"""
    queryset_class = TransactionQuerySet


class Transaction(BaseModel):
    """
    A customer payment processed for a sub-merchant

    Only captured transactions settle. `settlement` is null until a
    settlement claims the row.
    """

    sub_merchant = sub_merchant_field('transactions')

    reference = models.CharField(
        max_length=100,
        unique=True,
        verbose_name=_('Reference')
    )

    amount = money_field(_('Amount'))
    processor_fee = money_field(_('Processor fee'), help_text=_('Fee charged by the acquiring processor'))
    platform_fee = money_field(_('Platform fee'), help_text=_('Fee kept by the platform'))
    net_amount = money_field(_('Net amount'))

    status = models.CharField(
        max_length=20,
        choices=TRANSACTION_STATUSES,
        default=TRANSACTION_STATUS_AUTHORIZED,
        db_index=True,
        verbose_name=_('Status')
    )

    payment_method = models.CharField(
        max_length=20,
        choices=PAYMENT_METHODS,
        default=PAYMENT_METHOD_CARD,
        verbose_name=_('Payment method')
    )

    captured_at = models.DateTimeField(
        blank=True,
        null=True,
        db_index=True,
        verbose_name=_('Captured at')
    )

    settlement = settlement_claim_field('transactions')

    settled_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Settled at'))

    objects = TransactionManager()

    class Meta:
        verbose_name = _('Transaction')
        verbose_name_plural = _('Transactions')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['sub_merchant', 'status', 'captured_at']),
            models.Index(fields=['settlement']),
        ]

    def __str__(self):
        return f"Transaction {self.reference} - {self.amount} ({self.get_status_display()})"
