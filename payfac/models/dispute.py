from django.db import models
from django.utils.translation import gettext_lazy as _

from payfac.models.base import BaseModel, money_field, sub_merchant_field, settlement_claim_field
from payfac.models.transaction import LedgerManager, LedgerQuerySet
from payfac.constants import (
    DISPUTE_STATUSES,
    DISPUTE_STATUS_OPEN,
    DISPUTE_STATUS_LOST,
)


class DisputeQuerySet(LedgerQuerySet):
    """Custom QuerySet for Dispute model"""

    def lost(self):
        return self.filter(status=DISPUTE_STATUS_LOST)

    def settleable(self, sub_merchant, start, end):
        """Lost, unsettled disputes resolved within [start, end]"""
        return self.for_sub_merchant(sub_merchant).lost().unsettled().filter(
            resolved_at__gte=start,
            resolved_at__lte=end
        ).order_by('resolved_at', 'reference')


class DisputeManager(LedgerManager):
    queryset_class = DisputeQuerySet


class Dispute(BaseModel):
    """A chargeback; lost disputes are deducted at settlement with their fee"""

    sub_merchant = sub_merchant_field('disputes')

    transaction = models.ForeignKey(
        'payfac.Transaction',
        on_delete=models.SET_NULL,
        related_name='disputes',
        blank=True,
        null=True,
        verbose_name=_('Original transaction')
    )

    reference = models.CharField(max_length=100, unique=True, verbose_name=_('Reference'))

    amount = money_field(_('Amount'))
    dispute_fee = money_field(_('Dispute fee'))

    reason_code = models.CharField(max_length=50, blank=True, verbose_name=_('Reason code'))

    status = models.CharField(
        max_length=20,
        choices=DISPUTE_STATUSES,
        default=DISPUTE_STATUS_OPEN,
        db_index=True,
        verbose_name=_('Status')
    )

    resolved_at = models.DateTimeField(blank=True, null=True, db_index=True, verbose_name=_('Resolved at'))

    settlement = settlement_claim_field('disputes')

    settled_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Settled at'))

    objects = DisputeManager()

    class Meta:
        verbose_name = _('Dispute')
        verbose_name_plural = _('Disputes')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['sub_merchant', 'status', 'resolved_at']),
        ]

    def __str__(self):
        return f"Dispute {self.reference} - {self.amount} ({self.get_status_display()})"
