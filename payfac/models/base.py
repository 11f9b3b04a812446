"""
Abstract base model and field helpers shared by the payfac models
"""
import uuid

from django.db import models
from django.utils.translation import gettext_lazy as _
from djmoney.models.fields import MoneyField

from payfac.settings import get_payfac_setting


class TimestampedModel(models.Model):
    """Created and updated timestamps"""
    created_at = models.DateTimeField(
        auto_now_add=True,
        verbose_name=_('Created at')
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        verbose_name=_('Updated at')
    )

    class Meta:
        abstract = True


if get_payfac_setting('USE_UUID'):
    class BaseModel(TimestampedModel):
        """Timestamps and a UUID primary key"""
        id = models.UUIDField(
            primary_key=True,
            default=uuid.uuid4,
            editable=False,
            verbose_name=_('ID')
        )

        class Meta:
            abstract = True
else:
    class BaseModel(TimestampedModel):
        """Timestamps and the project's default auto primary key"""

        class Meta:
            abstract = True


def money_field(verbose_name, default=0, help_text='', **kwargs):
    """MoneyField in the configured currency with two decimal places"""
    return MoneyField(
        max_digits=19,
        decimal_places=2,
        default=default,
        default_currency=get_payfac_setting('CURRENCY'),
        verbose_name=verbose_name,
        help_text=help_text,
        **kwargs
    )


def sub_merchant_field(related_name):
    """Owning sub-merchant of a ledger row; ledger history blocks deletion"""
    return models.ForeignKey(
        'payfac.SubMerchant',
        on_delete=models.PROTECT,
        related_name=related_name,
        verbose_name=_('Sub-merchant')
    )


def settlement_claim_field(related_name, verbose_name=_('Settlement')):
    """
    Settlement that claimed a ledger row

    NULL means the row is still unsettled. Claims are made with a
    conditional update on this column.
    """
    return models.ForeignKey(
        'payfac.Settlement',
        on_delete=models.SET_NULL,
        related_name=related_name,
        blank=True,
        null=True,
        verbose_name=verbose_name
    )
