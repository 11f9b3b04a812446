"""
Operator API and confirmation webhook tests
"""
from unittest.mock import patch, MagicMock

from django.urls import reverse
from rest_framework import status

from payfac.test import PayfacTestCase, SETTLEMENT_DATE, RUN_DATE
from payfac.models import Settlement, Payout
from payfac.services.settlement_service import SettlementService
from payfac.services.payout_batch_service import PayoutBatchService
from payfac.constants import (
    PAYOUT_METHOD_BANK_TRANSFER,
    PAYOUT_STATUS_PENDING,
    PAYOUT_STATUS_APPROVED,
    PAYOUT_STATUS_SENT,
    PAYOUT_STATUS_COMPLETED,
    PAYOUT_STATUS_CANCELLED,
    SETTLEMENT_STATUS_CALCULATED,
    SETTLEMENT_STATUS_APPROVED,
    SETTLEMENT_STATUS_ON_HOLD,
)


CALLBACK_TOKEN = 'test-callback-token'


class ApiTestCase(PayfacTestCase):

    def make_settlement(self, amount=60000):
        """Settlement too large for auto-approval, left calculated"""
        self.make_transaction(amount)
        settlement = SettlementService(
            payout_service=self.payout_service,
            notification_service=self.notifications
        ).calculate_settlement_for_merchant(self.sub_merchant, SETTLEMENT_DATE, today=RUN_DATE)
        self.assertEqual(settlement.status, SETTLEMENT_STATUS_CALCULATED)
        return settlement


# ==========================================
# PERMISSIONS
# ==========================================

class OperatorPermissionTests(ApiTestCase):
    """Only staff users may use the operator API"""

    def test_anonymous_refused(self):
        response = self.api_client.get(reverse('settlement-list'))
        self.assertIn(response.status_code, [status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN])

    def test_non_staff_refused(self):
        for url in (reverse('settlement-list'), reverse('payout-list'), reverse('payout-batch-list')):
            response = self.user_client.get(url)
            self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_operator_allowed(self):
        response = self.operator_client.get(reverse('payout-summary'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)


# ==========================================
# SETTLEMENTS
# ==========================================

class SettlementApiTests(ApiTestCase):
    """Test settlement endpoints"""

    def test_list_and_retrieve(self):
        settlement = self.make_settlement()

        response = self.operator_client.get(reverse('settlement-list'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['reference'], settlement.reference)
        self.assertEqual(response.data[0]['net_amount_value'], '60000.00')

        response = self.operator_client.get(reverse('settlement-detail', args=[settlement.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['gross_sales_value'], '60000.00')
        self.assertEqual(len(response.data['items']), settlement.items.count())

    def test_filter_by_date_range(self):
        self.make_settlement()

        response = self.operator_client.get(reverse('settlement-list'), {'start_date': '2024-03-15'})
        self.assertEqual(response.data, [])

        response = self.operator_client.get(reverse('settlement-list'), {'start_date': 'yesterday'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_items(self):
        settlement = self.make_settlement()

        response = self.operator_client.get(reverse('settlement-items', args=[settlement.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            sorted(item['item_type'] for item in response.data),
            sorted(settlement.items.values_list('item_type', flat=True))
        )

    def test_approve(self):
        """Approving through the API creates a payout waiting for approval"""
        settlement = self.make_settlement()

        response = self.operator_client.post(reverse('settlement-approve', args=[settlement.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['settlement']['status'], SETTLEMENT_STATUS_APPROVED)
        self.assertEqual(response.data['settlement']['payout_status'], PAYOUT_STATUS_PENDING)

        settlement.refresh_from_db()
        self.assertEqual(settlement.approved_by, self.admin_user)
        self.assertEqual(settlement.payout.net_amount.amount, settlement.net_amount.amount - 5)

    def test_approve_twice_is_refused(self):
        settlement = self.make_settlement()
        self.operator_client.post(reverse('settlement-approve', args=[settlement.pk]))

        response = self.operator_client.post(reverse('settlement-approve', args=[settlement.pk]))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Payout.objects.count(), 1)

    def test_reject(self):
        settlement = self.make_settlement()

        response = self.operator_client.post(
            reverse('settlement-reject', args=[settlement.pk]),
            {'reason': 'Suspicious refund pattern'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        settlement.refresh_from_db()
        self.assertEqual(settlement.status, SETTLEMENT_STATUS_ON_HOLD)
        self.assertIn('Suspicious refund pattern', settlement.adjustment_notes)

    def test_reject_needs_reason(self):
        settlement = self.make_settlement()

        response = self.operator_client.post(
            reverse('settlement-reject', args=[settlement.pk]), {'reason': '  '}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        settlement.refresh_from_db()
        self.assertEqual(settlement.status, SETTLEMENT_STATUS_CALCULATED)

    def test_statistics(self):
        self.make_settlement()

        response = self.operator_client.get(
            reverse('settlement-statistics'), {'sub_merchant': str(self.sub_merchant.pk)}
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_count'], 1)
        self.assertEqual(response.data['calculated_count'], 1)

    def test_statistics_bad_parameters(self):
        response = self.operator_client.get(reverse('settlement-statistics'), {'end_date': '14/03/2024'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.operator_client.get(reverse('settlement-statistics'), {'sub_merchant': 'nope'})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


# ==========================================
# PAYOUTS
# ==========================================

class PayoutApiTests(ApiTestCase):
    """Test payout endpoints"""

    def test_create_payout(self):
        response = self.operator_client.post(
            reverse('payout-create-payout'),
            {'sub_merchant_id': str(self.sub_merchant.pk), 'amount': '1000.00'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['fee_value'], '5.00')
        self.assertEqual(response.data['net_amount_value'], '995.00')
        self.assertEqual(response.data['status'], PAYOUT_STATUS_APPROVED)
        self.assertEqual(response.data['instant_transfer_address'], '01000000001')

    def test_create_payout_validation(self):
        url = reverse('payout-create-payout')

        response = self.operator_client.post(
            url, {'sub_merchant_id': '00000000-0000-0000-0000-000000000000', 'amount': '10'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.operator_client.post(
            url,
            {'sub_merchant_id': str(self.sub_merchant.pk), 'amount': '10', 'destination': {'pigeon': 'x'}},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        # Fee larger than the payout
        response = self.operator_client.post(
            url,
            {'sub_merchant_id': str(self.sub_merchant.pk), 'amount': '3', 'method': PAYOUT_METHOD_BANK_TRANSFER},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Payout.objects.exists())

    def test_approve_and_cancel(self):
        first = self.make_payout(60000)
        second = self.make_payout(70000)

        response = self.operator_client.post(reverse('payout-approve', args=[first.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], PAYOUT_STATUS_APPROVED)

        response = self.operator_client.post(
            reverse('payout-cancel', args=[second.pk]), {'reason': 'Duplicate'}, format='json'
        )
        self.assertEqual(response.data['status'], PAYOUT_STATUS_CANCELLED)

        # Approved payouts cannot be cancelled
        response = self.operator_client.post(reverse('payout-cancel', args=[first.pk]), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('payfac.services.transfer_rails.requests.request')
    def test_process(self, mock_request):
        """Processing sends the payout over the configured rail"""
        mock_request.return_value = MagicMock(status_code=200)
        mock_request.return_value.json.return_value = {'status': 'pending', 'reference': 'TRX-9'}
        payout = self.make_payout(1000)

        response = self.operator_client.post(reverse('payout-process', args=[payout.pk]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], PAYOUT_STATUS_SENT)
        self.assertEqual(response.data['processor_reference'], 'TRX-9')
        self.assertEqual(mock_request.call_args[1]['url'], 'https://instant.example.com/api/transfers')

    def test_process_pending_payout_refused(self):
        payout = self.make_payout(60000)

        response = self.operator_client.post(reverse('payout-process', args=[payout.pk]))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_filtered_by_status(self):
        self.make_payout(60000)
        self.make_payout(1000)

        response = self.operator_client.get(reverse('payout-list'), {'status': PAYOUT_STATUS_PENDING})

        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['amount_value'], '60000.00')

    def test_summary(self):
        self.make_payout(60000)
        self.make_payout(1000)

        response = self.operator_client.get(reverse('payout-summary'))

        self.assertEqual(response.data['pending_approval_count'], 1)
        self.assertEqual(response.data['approved_count'], 1)

    def test_batch_list(self):
        self.make_payout(100, method=PAYOUT_METHOD_BANK_TRANSFER)
        self.make_payout(200, method=PAYOUT_METHOD_BANK_TRANSFER)
        PayoutBatchService(payout_service=self.payout_service, sleep=MagicMock()).process_scheduled_payouts(RUN_DATE)

        response = self.operator_client.get(reverse('payout-batch-list'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['payout_count'], 2)
        self.assertEqual(len(response.data[0]['payout_references']), 2)


# ==========================================
# CONFIRMATION WEBHOOK
# ==========================================

class PayoutWebhookTests(ApiTestCase):
    """Test the transfer confirmation webhook"""

    def setUp(self):
        super().setUp()
        self.url = reverse('payout-confirmation-webhook')
        self.payout = self.payout_service.process_single_payout(self.make_payout(1000))
        self.assertEqual(self.payout.status, PAYOUT_STATUS_SENT)

    def post(self, data, token=CALLBACK_TOKEN):
        headers = {'HTTP_X_PAYFAC_CALLBACK_TOKEN': token} if token is not None else {}
        return self.api_client.post(self.url, data, format='json', **headers)

    def test_missing_token(self):
        response = self.post({'processor_reference': 'TRX-1', 'status': 'completed'}, token=None)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_wrong_token(self):
        response = self.post({'processor_reference': 'TRX-1', 'status': 'completed'}, token='guess')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, PAYOUT_STATUS_SENT)

    @patch('payfac.permissions.get_payfac_setting', return_value='')
    def test_no_token_configured(self, mock_setting):
        response = self.post({'processor_reference': 'TRX-1', 'status': 'completed'}, token='')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_completed(self):
        response = self.post({
            'processor_reference': 'TRX-1',
            'status': 'completed',
            'details': {'settled_at': '2024-03-16'},
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['payout_reference'], self.payout.reference)
        self.assertEqual(response.data['payout_status'], PAYOUT_STATUS_COMPLETED)
        self.payout.refresh_from_db()
        self.assertEqual(self.payout.status, PAYOUT_STATUS_COMPLETED)

    def test_duplicate_delivery(self):
        self.post({'processor_reference': 'TRX-1', 'status': 'completed'})

        response = self.post({'processor_reference': 'TRX-1', 'status': 'failed'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['payout_status'], PAYOUT_STATUS_COMPLETED)

    def test_unknown_reference(self):
        response = self.post({'processor_reference': 'TRX-404', 'status': 'completed'})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_invalid_payload(self):
        response = self.post({'processor_reference': 'TRX-1', 'status': 'maybe'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.post({'status': 'completed'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
