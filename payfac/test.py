from datetime import date, datetime, time
from decimal import Decimal
from unittest.mock import MagicMock

from django.test import TestCase
from django.contrib.auth import get_user_model
from django.utils import timezone
from djmoney.money import Money
from rest_framework.test import APIClient

from payfac.models import SubMerchant, Transaction, Refund, Dispute, Reserve
from payfac.services.notification_service import NotificationService
from payfac.services.payout_service import PayoutService
from payfac.services.transfer_rails import TransferResult, BatchTransferResult
from payfac.constants import (
    SUB_MERCHANT_STATUS_ACTIVE,
    SETTLEMENT_CYCLE_D1,
    PAYOUT_METHOD_INSTANT_TRANSFER,
    PAYOUT_METHOD_BANK_TRANSFER,
    PAYOUT_METHOD_WALLET,
    TRANSACTION_STATUS_CAPTURED,
    REFUND_STATUS_COMPLETED,
    DISPUTE_STATUS_LOST,
)

User = get_user_model()

# Thursday
SETTLEMENT_DATE = date(2024, 3, 14)
RUN_DATE = date(2024, 3, 15)


def egp(amount):
    return Money(Decimal(str(amount)), 'EGP')


def at(on_date, hour=12, minute=0):
    """Aware datetime on a date"""
    return timezone.make_aware(datetime.combine(on_date, time(hour, minute)))


def make_rail(result=None):
    """Transfer rail double whose send() answers `result` (accepted by default)"""
    rail = MagicMock()
    rail.send.return_value = result or TransferResult(
        success=True, provider_reference='TRX-1', status='pending', data={'status': 'pending'}
    )
    rail.submit_batch.return_value = BatchTransferResult(success=True, details={'status': 'accepted'})
    rail.check_status.return_value = None
    return rail


class PayfacTestCase(TestCase):
    """Base test case for settlement and payout tests"""

    def setUp(self):
        """Setup test data for each test method"""
        self.admin_user = User.objects.create_superuser(
            username='operator',
            email='operator@example.com',
            password='operatorpass123'
        )
        self.user = User.objects.create_user(
            username='merchantuser',
            email='merchant@example.com',
            password='password123'
        )

        # API clients
        self.api_client = APIClient()
        self.operator_client = APIClient()
        self.operator_client.force_authenticate(user=self.admin_user)
        self.user_client = APIClient()
        self.user_client.force_authenticate(user=self.user)

        # Services wired to rail doubles
        self.notifications = MagicMock(spec=NotificationService)
        self.rails = {
            PAYOUT_METHOD_INSTANT_TRANSFER: make_rail(),
            PAYOUT_METHOD_BANK_TRANSFER: make_rail(),
            PAYOUT_METHOD_WALLET: make_rail(),
        }
        self.payout_service = PayoutService(rails=self.rails, notification_service=self.notifications)

        self.sub_merchant = self.make_sub_merchant()

    def make_sub_merchant(self, merchant_code='SM-001', **kwargs):
        fields = {
            'business_name': f"Shop {merchant_code}",
            'email': f"{merchant_code.lower()}@example.com",
            'status': SUB_MERCHANT_STATUS_ACTIVE,
            'settlement_cycle': SETTLEMENT_CYCLE_D1,
            'reserve_percentage': Decimal('0'),
            'reserve_days': 90,
            'minimum_payout_amount': egp(100),
            'payout_method': PAYOUT_METHOD_INSTANT_TRANSFER,
            'instant_transfer_address': '01000000001',
            'bank_code': 'CIB',
            'bank_account_number': '100200300',
            'bank_account_name': f"Shop {merchant_code}",
            'wallet_provider': 'vodafone',
            'wallet_number': '01000000001',
        }
        fields.update(kwargs)
        return SubMerchant.objects.create(merchant_code=merchant_code, **fields)

    def make_transaction(self, amount, processor_fee=0, platform_fee=0, captured_at=None,
                         sub_merchant=None, reference=None, **kwargs):
        sub_merchant = sub_merchant or self.sub_merchant
        amount, processor_fee, platform_fee = egp(amount), egp(processor_fee), egp(platform_fee)
        return Transaction.objects.create(
            sub_merchant=sub_merchant,
            reference=reference or f"TX-{Transaction.objects.count() + 1:05d}",
            amount=amount,
            processor_fee=processor_fee,
            platform_fee=platform_fee,
            net_amount=amount - processor_fee - platform_fee,
            status=kwargs.pop('status', TRANSACTION_STATUS_CAPTURED),
            captured_at=captured_at or at(SETTLEMENT_DATE),
            **kwargs
        )

    def make_refund(self, amount, refund_fee=0, completed_at=None, sub_merchant=None, **kwargs):
        return Refund.objects.create(
            sub_merchant=sub_merchant or self.sub_merchant,
            reference=f"RF-{Refund.objects.count() + 1:05d}",
            amount=egp(amount),
            refund_fee=egp(refund_fee),
            status=kwargs.pop('status', REFUND_STATUS_COMPLETED),
            completed_at=completed_at or at(SETTLEMENT_DATE, 15),
            **kwargs
        )

    def make_dispute(self, amount, dispute_fee=0, resolved_at=None, sub_merchant=None, **kwargs):
        return Dispute.objects.create(
            sub_merchant=sub_merchant or self.sub_merchant,
            reference=f"DP-{Dispute.objects.count() + 1:05d}",
            amount=egp(amount),
            dispute_fee=egp(dispute_fee),
            reason_code=kwargs.pop('reason_code', '4837'),
            status=kwargs.pop('status', DISPUTE_STATUS_LOST),
            resolved_at=resolved_at or at(SETTLEMENT_DATE, 16),
            **kwargs
        )

    def make_reserve(self, amount, release_date, sub_merchant=None, **kwargs):
        return Reserve.objects.create(
            sub_merchant=sub_merchant or self.sub_merchant,
            amount=egp(amount),
            release_date=release_date,
            **kwargs
        )

    def make_payout(self, amount=1000, method=PAYOUT_METHOD_INSTANT_TRANSFER, sub_merchant=None, **kwargs):
        """Approved payout scheduled on RUN_DATE unless told otherwise"""
        kwargs.setdefault('scheduled_date', RUN_DATE)
        kwargs.setdefault('today', RUN_DATE)
        return self.payout_service.create_payout(
            sub_merchant=sub_merchant or self.sub_merchant,
            amount=egp(amount),
            method=method,
            **kwargs
        )
