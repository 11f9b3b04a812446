"""
Test cases for PayoutService and the payout fee schedule
Rails are replaced with mocks
"""
from decimal import Decimal
from unittest.mock import MagicMock, patch

from payfac.test import PayfacTestCase, egp, SETTLEMENT_DATE, RUN_DATE
from payfac.models import Payout, Settlement
from payfac.services.fee_service import PayoutFeeCalculator
from payfac.services.settlement_service import SettlementService
from payfac.services.payout_service import PayoutService
from payfac.services.transfer_rails import TransferResult, InstantTransferRail
from payfac.exceptions import (
    InvalidAmount,
    InvalidPayoutDestination,
    InvalidStateTransition,
    PayoutError,
    TransferRailUnavailable,
    TransferTimeout,
    InvalidRailResponse,
)
from payfac.constants import (
    PAYOUT_METHOD_INSTANT_TRANSFER,
    PAYOUT_METHOD_BANK_TRANSFER,
    PAYOUT_METHOD_WALLET,
    PAYOUT_STATUS_PENDING,
    PAYOUT_STATUS_APPROVED,
    PAYOUT_STATUS_PROCESSING,
    PAYOUT_STATUS_SENT,
    PAYOUT_STATUS_COMPLETED,
    PAYOUT_STATUS_FAILED,
    PAYOUT_STATUS_CANCELLED,
    PAYOUT_FAILURE_PROCESSING_ERROR,
    PAYOUT_FAILURE_REJECTED,
    PROCESSOR_STATUS_UNKNOWN,
    SETTLEMENT_STATUS_PAID,
    SETTLEMENT_STATUS_PAYOUT_FAILED,
    NOTIFICATION_PAYOUT_SENT,
    NOTIFICATION_PAYOUT_COMPLETED,
    NOTIFICATION_PAYOUT_FAILED,
)


class PayoutFeeTests(PayfacTestCase):
    """Tests for the payout fee schedule"""

    def setUp(self):
        super().setUp()
        self.fees = PayoutFeeCalculator()

    def test_flat_fees(self):
        self.assertEqual(self.fees.calculate_fee(egp(1000), PAYOUT_METHOD_INSTANT_TRANSFER), egp(5))
        self.assertEqual(self.fees.calculate_fee(egp(1000), PAYOUT_METHOD_WALLET), egp(3))

    def test_bank_fee_tiers(self):
        self.assertEqual(self.fees.calculate_fee(egp(50000), PAYOUT_METHOD_BANK_TRANSFER), egp(10))
        self.assertEqual(self.fees.calculate_fee(egp('50000.01'), PAYOUT_METHOD_BANK_TRANSFER), egp(25))

    def test_unknown_method(self):
        with self.assertRaises(PayoutError):
            self.fees.calculate_fee(egp(1000), 'carrier_pigeon')


class PayoutCreationTests(PayfacTestCase):
    """Tests for creating payouts"""

    def test_instant_payout_net_of_fee(self):
        """1000 over instant transfer costs 5 and sends 995"""
        payout = self.make_payout(1000)

        self.assertEqual(payout.fee, egp(5))
        self.assertEqual(payout.net_amount, egp(995))
        self.assertEqual(payout.status, PAYOUT_STATUS_APPROVED)
        self.assertFalse(payout.requires_approval)
        self.assertEqual(payout.instant_transfer_address, '01000000001')
        self.assertTrue(payout.reference.startswith('PO-20240315-'))

    def test_large_payout_needs_approval(self):
        payout = self.make_payout(60000)

        self.assertEqual(payout.status, PAYOUT_STATUS_PENDING)
        self.assertTrue(payout.requires_approval)

    def test_fee_override(self):
        payout = self.make_payout(1000, fee=egp(0))

        self.assertEqual(payout.net_amount, egp(1000))

    def test_invalid_amounts(self):
        with self.assertRaises(InvalidAmount):
            self.make_payout(0)
        with self.assertRaises(InvalidAmount):
            self.make_payout(-10)
        # Fee would eat the whole payout
        with self.assertRaises(InvalidAmount):
            self.make_payout(5)

    def test_missing_destination(self):
        with self.assertRaises(InvalidPayoutDestination) as ctx:
            self.make_payout(1000, destination={'bank_code': 'CIB'})

        self.assertEqual(ctx.exception.missing, ['instant_transfer_address'])
        self.assertFalse(Payout.objects.exists())

    def test_unknown_method(self):
        with self.assertRaises(PayoutError):
            self.make_payout(1000, method='cheque')

    def test_approve_and_cancel(self):
        first = self.make_payout(60000)
        second = self.make_payout(70000)

        first = self.payout_service.approve_payout(first, approved_by=self.admin_user)
        second = self.payout_service.cancel_payout(second, reason='Merchant request')

        self.assertEqual(first.status, PAYOUT_STATUS_APPROVED)
        self.assertEqual(first.approved_by, self.admin_user)
        self.assertEqual(second.status, PAYOUT_STATUS_CANCELLED)
        with self.assertRaises(InvalidStateTransition):
            self.payout_service.cancel_payout(first)


class ProcessSinglePayoutTests(PayfacTestCase):
    """Tests for sending one payout over its rail"""

    def setUp(self):
        super().setUp()
        self.rail = self.rails[PAYOUT_METHOD_INSTANT_TRANSFER]

    def make_settled_payout(self, amount=1000):
        """Payout belonging to an approved settlement"""
        self.make_transaction(amount)
        settlement = SettlementService(
            payout_service=self.payout_service, notification_service=self.notifications
        ).calculate_settlement_for_merchant(self.sub_merchant, SETTLEMENT_DATE, today=RUN_DATE)
        return settlement.payout

    def test_accepted_payout_is_sent(self):
        payout = self.make_payout(1000)

        payout = self.payout_service.process_single_payout(payout)

        self.assertEqual(payout.status, PAYOUT_STATUS_SENT)
        self.assertEqual(payout.processor_reference, 'TRX-1')
        self.assertIsNotNone(payout.initiated_at)
        kwargs = self.rail.send.call_args[1]
        self.assertEqual(kwargs['amount'], Decimal('995.00'))
        self.assertEqual(kwargs['reference'], payout.reference)
        self.assertEqual(kwargs['destination']['instant_transfer_address'], '01000000001')
        self.notifications.notify.assert_called_once()
        kind, sub_merchant, payload = self.notifications.notify.call_args[0]
        self.assertEqual(kind, NOTIFICATION_PAYOUT_SENT)
        self.assertEqual(payload['reference'], payout.reference)
        self.assertEqual(payload['amount'], '995.00')

    def test_confirmed_payout_completes_settlement(self):
        self.rail.send.return_value = TransferResult(
            success=True, provider_reference='TRX-2', completed=True, status='success'
        )
        payout = self.make_settled_payout()

        payout = self.payout_service.process_single_payout(payout)

        self.assertEqual(payout.status, PAYOUT_STATUS_COMPLETED)
        self.assertEqual(payout.processor_reference, 'TRX-2')
        self.assertEqual(Settlement.objects.get(pk=payout.settlement_id).status, SETTLEMENT_STATUS_PAID)
        self.assertEqual(self.notifications.notify.call_args[0][0], NOTIFICATION_PAYOUT_COMPLETED)

    def test_only_approved_payouts_are_sent(self):
        payout = self.make_payout(60000)

        with self.assertRaises(InvalidStateTransition):
            self.payout_service.process_single_payout(payout)
        self.rail.send.assert_not_called()

    def test_unusable_destination_is_refused_before_sending(self):
        payout = self.make_payout(1000)
        Payout.objects.filter(pk=payout.pk).update(instant_transfer_address='')

        with self.assertRaises(InvalidPayoutDestination):
            self.payout_service.process_single_payout(payout)

        payout.refresh_from_db()
        self.assertEqual(payout.status, PAYOUT_STATUS_APPROVED)
        self.rail.send.assert_not_called()

    def test_unavailable_rail_reschedules(self):
        """A transient failure uses a retry and puts the payout back in line"""
        self.rail.send.side_effect = TransferRailUnavailable('connection refused')
        payout = self.make_payout(1000)

        payout = self.payout_service.process_single_payout(payout)

        self.assertEqual(payout.status, PAYOUT_STATUS_APPROVED)
        self.assertEqual(payout.retry_count, 1)
        self.assertEqual(payout.failure_code, PAYOUT_FAILURE_PROCESSING_ERROR)

    def test_retries_are_bounded(self):
        """The third transient failure is final"""
        self.rail.send.side_effect = TransferRailUnavailable('connection refused')
        payout = self.make_settled_payout()

        for _ in range(3):
            payout = self.payout_service.process_single_payout(payout)

        self.assertEqual(payout.status, PAYOUT_STATUS_FAILED)
        self.assertEqual(payout.retry_count, 3)
        self.assertEqual(self.rail.send.call_count, 3)
        self.assertEqual(Settlement.objects.get(pk=payout.settlement_id).status, SETTLEMENT_STATUS_PAYOUT_FAILED)
        self.assertEqual(self.notifications.notify.call_args[0][0], NOTIFICATION_PAYOUT_FAILED)
        self.notifications.alert.assert_called()

        with self.assertRaises(InvalidStateTransition):
            self.payout_service.process_single_payout(payout)

    def test_declined_payout_is_final(self):
        self.rail.send.return_value = TransferResult(success=False, message='Account closed', status='rejected')
        payout = self.make_settled_payout()

        payout = self.payout_service.process_single_payout(payout)

        self.assertEqual(payout.status, PAYOUT_STATUS_FAILED)
        self.assertEqual(payout.failure_code, PAYOUT_FAILURE_REJECTED)
        self.assertEqual(payout.retry_count, 0)
        self.assertFalse(payout.can_retry)
        self.assertEqual(Settlement.objects.get(pk=payout.settlement_id).status, SETTLEMENT_STATUS_PAYOUT_FAILED)

    def test_timeout_leaves_outcome_unknown(self):
        """A timed out payout is neither failed nor retried"""
        self.rail.send.side_effect = TransferTimeout('read timed out')
        payout = self.make_payout(1000)

        payout = self.payout_service.process_single_payout(payout)

        self.assertEqual(payout.status, PAYOUT_STATUS_PROCESSING)
        self.assertEqual(payout.processor_status, PROCESSOR_STATUS_UNKNOWN)
        self.assertEqual(payout.retry_count, 0)

    def test_garbled_response_treated_like_timeout(self):
        self.rail.send.side_effect = InvalidRailResponse('<html>')
        payout = self.make_payout(1000)

        payout = self.payout_service.process_single_payout(payout)

        self.assertEqual(payout.status, PAYOUT_STATUS_PROCESSING)
        self.assertEqual(payout.processor_status, PROCESSOR_STATUS_UNKNOWN)

    def test_wallet_payout_uses_wallet_rail(self):
        payout = self.make_payout(1000, method=PAYOUT_METHOD_WALLET)

        self.payout_service.process_single_payout(payout)

        self.rails[PAYOUT_METHOD_WALLET].send.assert_called_once()
        self.rail.send.assert_not_called()
        self.assertEqual(payout.fee, egp(3))


@patch('payfac.services.transfer_rails.requests.request')
class InstantRailAnswerTests(PayfacTestCase):
    """How HTTP answers from the instant transfer rail land on the payout"""

    def setUp(self):
        super().setUp()
        rail = InstantTransferRail(api_url='https://instant.example.com/api/', api_key='sk_test', timeout=5)
        self.payout_service = PayoutService(
            rails={PAYOUT_METHOD_INSTANT_TRANSFER: rail}, notification_service=self.notifications
        )

    def answer(self, mock_request, status_code, data):
        response = MagicMock()
        response.status_code = status_code
        response.text = str(data)
        response.json.return_value = data
        mock_request.return_value = response
        return self.payout_service.process_single_payout(self.make_payout(1000))

    def test_rate_limited_is_retried(self, mock_request):
        payout = self.answer(mock_request, 429, {'message': 'Too many requests'})

        self.assertEqual(payout.status, PAYOUT_STATUS_APPROVED)
        self.assertEqual(payout.failure_code, PAYOUT_FAILURE_PROCESSING_ERROR)
        self.assertEqual(payout.retry_count, 1)
        self.notifications.alert.assert_not_called()

    def test_request_timeout_awaits_reconciliation(self, mock_request):
        payout = self.answer(mock_request, 408, {'message': 'Request timeout'})

        self.assertEqual(payout.status, PAYOUT_STATUS_PROCESSING)
        self.assertEqual(payout.processor_status, PROCESSOR_STATUS_UNKNOWN)
        self.assertEqual(payout.retry_count, 0)

    def test_duplicate_reference_awaits_reconciliation(self, mock_request):
        payout = self.answer(mock_request, 409, {'message': 'Duplicate reference'})

        self.assertEqual(payout.status, PAYOUT_STATUS_PROCESSING)
        self.assertEqual(payout.processor_status, PROCESSOR_STATUS_UNKNOWN)
        self.notifications.alert.assert_not_called()

    def test_invalid_account_is_final(self, mock_request):
        payout = self.answer(mock_request, 400, {'message': 'Invalid receiver'})

        self.assertEqual(payout.status, PAYOUT_STATUS_FAILED)
        self.assertEqual(payout.failure_code, PAYOUT_FAILURE_REJECTED)
        self.assertFalse(payout.can_retry)


class PayoutStatsTests(PayfacTestCase):

    def test_pending_summary(self):
        self.make_payout(60000)
        self.make_payout(1000)
        self.make_payout(2000, method=PAYOUT_METHOD_WALLET)

        summary = self.payout_service.get_pending_payout_summary()

        self.assertEqual(summary['pending_approval_count'], 1)
        self.assertEqual(summary['approved_count'], 2)
        self.assertEqual(summary['approved_amount'], Decimal('3000'))
        self.assertEqual(summary['by_method'][PAYOUT_METHOD_WALLET]['count'], 1)

    def test_payout_stats(self):
        self.rails[PAYOUT_METHOD_INSTANT_TRANSFER].send.return_value = TransferResult(
            success=True, provider_reference='TRX-3', completed=True, status='success'
        )
        self.payout_service.process_single_payout(self.make_payout(1000))
        self.make_payout(500)

        stats = self.payout_service.get_payout_stats(today=RUN_DATE)

        self.assertEqual(stats['total_count'], 2)
        self.assertEqual(stats['completed_count'], 1)
        self.assertEqual(stats['completed_amount'], Decimal('995'))
        self.assertEqual(stats['this_month_amount'], Decimal('995'))

