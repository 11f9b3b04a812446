from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils.translation import gettext_lazy as _

from payfac.models.base import BaseModel, money_field
from payfac.constants import (
    SUB_MERCHANT_STATUSES,
    SUB_MERCHANT_STATUS_ACTIVE,
    SUB_MERCHANT_STATUS_PENDING,
    SETTLEMENT_CYCLES,
    SETTLEMENT_CYCLE_D1,
    DAYS_OF_WEEK,
    PAYOUT_METHODS,
    PAYOUT_METHOD_BANK_TRANSFER,
)
from payfac.settings import get_payfac_setting


class SubMerchantQuerySet(models.QuerySet):
    """Custom QuerySet for SubMerchant model"""

    def active(self):
        """Return only active sub-merchants"""
        return self.filter(status=SUB_MERCHANT_STATUS_ACTIVE)


class SubMerchantManager(models.Manager):
    """Custom Manager for SubMerchant model"""

    def get_queryset(self):
        """Return custom queryset"""
        return SubMerchantQuerySet(self.model, using=self._db)

    def active(self):
        """Return only active sub-merchants"""
        return self.get_queryset().active()

    def by_code(self, merchant_code):
        return self.get_queryset().get(merchant_code=merchant_code)


class SubMerchant(BaseModel):
    """
    A merchant onboarded under the platform's PayFac umbrella

    Only the fields the settlement and payout pipeline reads are modelled here:
    the settlement cycle, the reserve policy, the minimum payout and where the
    money should be sent.
    """

    merchant_code = models.CharField(
        max_length=50,
        unique=True,
        db_index=True,
        verbose_name=_('Merchant code')
    )

    business_name = models.CharField(
        max_length=255,
        verbose_name=_('Business name')
    )

    email = models.EmailField(
        blank=True,
        verbose_name=_('Email'),
        help_text=_('Address settlement and payout notifications are sent to')
    )

    phone = models.CharField(
        max_length=20,
        blank=True,
        verbose_name=_('Phone')
    )

    status = models.CharField(
        max_length=20,
        choices=SUB_MERCHANT_STATUSES,
        default=SUB_MERCHANT_STATUS_PENDING,
        db_index=True,
        verbose_name=_('Status')
    )

    # ==========================================
    # SETTLEMENT CONFIGURATION
    # ==========================================

    settlement_cycle = models.CharField(
        max_length=10,
        choices=SETTLEMENT_CYCLES,
        default=SETTLEMENT_CYCLE_D1,
        verbose_name=_('Settlement cycle')
    )

    settlement_day_of_week = models.PositiveSmallIntegerField(
        choices=DAYS_OF_WEEK,
        default=0,
        verbose_name=_('Settlement day of week'),
        help_text=_('Used by weekly and biweekly cycles (0 = Sunday)')
    )

    settlement_day_of_month = models.PositiveSmallIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(31)],
        verbose_name=_('Settlement day of month'),
        help_text=_('Used by the monthly cycle')
    )

    reserve_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        default=Decimal('0'),
        validators=[MinValueValidator(Decimal('0')), MaxValueValidator(Decimal('1'))],
        verbose_name=_('Reserve percentage'),
        help_text=_('Fraction of gross sales held back, e.g. 0.1000 for 10%')
    )

    reserve_days = models.PositiveIntegerField(
        default=get_payfac_setting('DEFAULT_RESERVE_DAYS'),
        verbose_name=_('Reserve days'),
        help_text=_('Days a rolling reserve is held before release')
    )

    minimum_payout_amount = money_field(
        _('Minimum payout amount'),
        default=get_payfac_setting('DEFAULT_MINIMUM_PAYOUT_AMOUNT'),
        help_text=_('Settlements with a smaller net amount are not created')
    )

    risk_score = models.PositiveSmallIntegerField(
        blank=True,
        null=True,
        validators=[MaxValueValidator(100)],
        verbose_name=_('Risk score')
    )

    # ==========================================
    # PAYOUT DESTINATION
    # ==========================================

    payout_method = models.CharField(
        max_length=20,
        choices=PAYOUT_METHODS,
        default=PAYOUT_METHOD_BANK_TRANSFER,
        verbose_name=_('Payout method')
    )

    bank_code = models.CharField(max_length=20, blank=True, verbose_name=_('Bank code'))
    bank_account_number = models.CharField(max_length=50, blank=True, verbose_name=_('Bank account number'))
    bank_account_name = models.CharField(max_length=255, blank=True, verbose_name=_('Bank account name'))
    iban = models.CharField(max_length=34, blank=True, verbose_name=_('IBAN'))
    instant_transfer_address = models.CharField(
        max_length=100,
        blank=True,
        verbose_name=_('Instant transfer address'),
        help_text=_('Mobile number or payment address on the instant transfer network')
    )
    wallet_provider = models.CharField(max_length=50, blank=True, verbose_name=_('Wallet provider'))
    wallet_number = models.CharField(max_length=20, blank=True, verbose_name=_('Wallet number'))

    objects = SubMerchantManager()

    class Meta:
        verbose_name = _('Sub-merchant')
        verbose_name_plural = _('Sub-merchants')
        ordering = ['business_name']
        indexes = [
            models.Index(fields=['status', 'settlement_cycle']),
        ]

    def __str__(self):
        return f"{self.business_name} ({self.merchant_code})"

    @property
    def is_active(self):
        return self.status == SUB_MERCHANT_STATUS_ACTIVE

    def get_payout_destination(self):
        """
        Destination fields for the configured payout method

        Returns:
            dict: Destination fields as stored on a Payout
        """
        return {
            'bank_code': self.bank_code,
            'bank_account_number': self.bank_account_number,
            'bank_account_name': self.bank_account_name,
            'iban': self.iban,
            'instant_transfer_address': self.instant_transfer_address,
            'wallet_provider': self.wallet_provider,
            'wallet_number': self.wallet_number,
        }
