from django.db import models
from django.utils.translation import gettext_lazy as _

from payfac.models.base import BaseModel, money_field, sub_merchant_field, settlement_claim_field
from payfac.models.transaction import LedgerManager, LedgerQuerySet
from payfac.constants import (
    REFUND_STATUSES,
    REFUND_STATUS_PENDING,
    REFUND_STATUS_COMPLETED,
)


class RefundQuerySet(LedgerQuerySet):
    """Custom QuerySet for Refund model"""

    def completed(self):
        return self.filter(status=REFUND_STATUS_COMPLETED)

    def settleable(self, sub_merchant, start, end):
        """Completed, unsettled refunds completed within [start, end]"""
        return self.for_sub_merchant(sub_merchant).completed().unsettled().filter(
            completed_at__gte=start,
            completed_at__lte=end
        ).order_by('completed_at', 'reference')


class RefundManager(LedgerManager):
    queryset_class = RefundQuerySet


class Refund(BaseModel):
    """Money returned to a customer, deducted at settlement together with its fee"""

    sub_merchant = sub_merchant_field('refunds')

    transaction = models.ForeignKey(
        'payfac.Transaction',
        on_delete=models.SET_NULL,
        related_name='refunds',
        blank=True,
        null=True,
        verbose_name=_('Original transaction')
    )

    reference = models.CharField(max_length=100, unique=True, verbose_name=_('Reference'))

    amount = money_field(_('Amount'))
    refund_fee = money_field(_('Refund fee'))

    status = models.CharField(
        max_length=20,
        choices=REFUND_STATUSES,
        default=REFUND_STATUS_PENDING,
        db_index=True,
        verbose_name=_('Status')
    )

    completed_at = models.DateTimeField(blank=True, null=True, db_index=True, verbose_name=_('Completed at'))

    settlement = settlement_claim_field('refunds')

    settled_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Settled at'))

    objects = RefundManager()

    class Meta:
        verbose_name = _('Refund')
        verbose_name_plural = _('Refunds')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['sub_merchant', 'status', 'completed_at']),
        ]

    def __str__(self):
        return f"Refund {self.reference} - {self.amount}"
