from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from payfac.models.base import BaseModel, money_field, sub_merchant_field, settlement_claim_field
from payfac.constants import (
    RESERVE_STATUSES,
    RESERVE_STATUS_HELD,
    RESERVE_STATUS_RELEASED,
    RESERVE_TYPES,
    RESERVE_TYPE_ROLLING,
)


class ReserveQuerySet(models.QuerySet):
    """Custom QuerySet for Reserve model"""

    def held(self):
        return self.filter(status=RESERVE_STATUS_HELD)

    def released(self):
        return self.filter(status=RESERVE_STATUS_RELEASED)

    def releasable(self, sub_merchant, on_date):
        """Held reserves of the sub-merchant whose release date is on or before on_date"""
        return self.filter(
            sub_merchant=sub_merchant,
            status=RESERVE_STATUS_HELD,
            release_date__lte=on_date
        ).order_by('release_date', 'created_at')

    def mark_released(self, settlement, ids):
        """
        Flip held reserves to released in one conditional update

        Returns:
            int: Number of reserves released (lower than len(ids) if some
            were already released)
        """
        return self.filter(pk__in=ids, status=RESERVE_STATUS_HELD).update(
            status=RESERVE_STATUS_RELEASED,
            released_at=timezone.now(),
            released_by_settlement=settlement
        )


class ReserveManager(models.Manager):
    def get_queryset(self):
        return ReserveQuerySet(self.model, using=self._db)

    def held(self):
        return self.get_queryset().held()

    def releasable(self, sub_merchant, on_date):
        return self.get_queryset().releasable(sub_merchant, on_date)


class Reserve(BaseModel):
    """
    Funds withheld from a settlement and returned by a later one

    Created held with a future release date; released exactly once, by the
    first settlement whose period ends on or after that date.
    """

    sub_merchant = sub_merchant_field('reserves')

    settlement = settlement_claim_field('reserves_created', verbose_name=_('Created by settlement'))

    reserve_type = models.CharField(
        max_length=20,
        choices=RESERVE_TYPES,
        default=RESERVE_TYPE_ROLLING,
        verbose_name=_('Reserve type')
    )

    amount = money_field(_('Amount'))

    release_date = models.DateField(db_index=True, verbose_name=_('Release date'))

    status = models.CharField(
        max_length=20,
        choices=RESERVE_STATUSES,
        default=RESERVE_STATUS_HELD,
        db_index=True,
        verbose_name=_('Status')
    )

    released_at = models.DateTimeField(blank=True, null=True, verbose_name=_('Released at'))

    released_by_settlement = models.ForeignKey(
        'payfac.Settlement',
        on_delete=models.SET_NULL,
        related_name='reserves_released',
        blank=True,
        null=True,
        verbose_name=_('Released by settlement')
    )

    objects = ReserveManager()

    class Meta:
        verbose_name = _('Reserve')
        verbose_name_plural = _('Reserves')
        ordering = ['release_date']
        indexes = [
            models.Index(fields=['sub_merchant', 'status', 'release_date']),
        ]

    def __str__(self):
        return f"Reserve {self.amount} until {self.release_date} ({self.get_status_display()})"

    @property
    def is_held(self):
        return self.status == RESERVE_STATUS_HELD
