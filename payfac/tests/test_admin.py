"""
Test cases for the admin actions and exports
"""
from unittest.mock import patch

from django.contrib import admin
from django.contrib.messages import get_messages
from django.contrib.messages.storage.fallback import FallbackStorage
from django.test import RequestFactory

from payfac.test import PayfacTestCase, SETTLEMENT_DATE, RUN_DATE
from payfac.admin import TransactionAdmin, SettlementAdmin, PayoutAdmin
from payfac.models import Transaction, Settlement, Payout
from payfac.services.settlement_service import SettlementService
from payfac.services.reconciliation_service import ReconciliationService
from payfac.constants import (
    SETTLEMENT_STATUS_APPROVED,
    SETTLEMENT_STATUS_ON_HOLD,
    PAYOUT_STATUS_SENT,
    PAYOUT_FAILURE_PROCESSING_ERROR,
)


class AdminTestCase(PayfacTestCase):

    def make_request(self):
        request = RequestFactory().post('/admin/')
        request.user = self.admin_user
        request.session = {}
        request._messages = FallbackStorage(request)
        return request

    @staticmethod
    def message_texts(request):
        return [str(message) for message in get_messages(request)]


class ExportActionTests(AdminTestCase):
    """Test the CSV, Excel and PDF exports"""

    def setUp(self):
        super().setUp()
        self.make_transaction(1000, processor_fee=25, reference='TX-EXPORT-1')
        self.make_transaction(500, reference='TX-EXPORT-2')
        self.model_admin = TransactionAdmin(Transaction, admin.site)
        self.queryset = Transaction.objects.order_by('reference')

    def test_csv(self):
        response = self.model_admin.export_to_csv(self.make_request(), self.queryset)

        self.assertEqual(response['Content-Type'], 'text/csv')
        self.assertIn('attachment; filename="transactions_', response['Content-Disposition'])
        content = response.content.decode()
        self.assertIn('TX-EXPORT-1', content)
        self.assertIn('TX-EXPORT-2', content)
        self.assertEqual(len(content.strip().splitlines()), 3)

    def test_excel(self):
        response = self.model_admin.export_to_excel(self.make_request(), self.queryset)

        self.assertEqual(
            response['Content-Type'],
            'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        )
        # xlsx files are zip archives
        self.assertTrue(response.content.startswith(b'PK'))

    def test_pdf(self):
        response = self.model_admin.export_to_pdf(self.make_request(), self.queryset)

        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertTrue(response.content.startswith(b'%PDF'))


class SettlementAdminActionTests(AdminTestCase):

    def setUp(self):
        super().setUp()
        self.model_admin = SettlementAdmin(Settlement, admin.site)
        self.make_transaction(60000)
        self.settlement = SettlementService(
            payout_service=self.payout_service, notification_service=self.notifications
        ).calculate_settlement_for_merchant(self.sub_merchant, SETTLEMENT_DATE, today=RUN_DATE)

    def test_approve_settlements(self):
        request = self.make_request()

        self.model_admin.approve_settlements(request, Settlement.objects.all())

        self.settlement.refresh_from_db()
        self.assertEqual(self.settlement.status, SETTLEMENT_STATUS_APPROVED)
        self.assertIsNotNone(self.settlement.payout)
        self.assertIn('Approved 1 settlements', self.message_texts(request))

    def test_reject_settlements(self):
        request = self.make_request()

        self.model_admin.reject_settlements(request, Settlement.objects.all())

        self.settlement.refresh_from_db()
        self.assertEqual(self.settlement.status, SETTLEMENT_STATUS_ON_HOLD)
        self.assertIn('operator', self.settlement.adjustment_notes)


class PayoutAdminActionTests(AdminTestCase):

    def setUp(self):
        super().setUp()
        self.model_admin = PayoutAdmin(Payout, admin.site)

    @patch('payfac.admin.ReconciliationService')
    def test_retry_payouts(self, mock_service):
        mock_service.return_value = ReconciliationService(self.payout_service)
        payout = self.make_payout(1000)
        payout.mark_as_processing()
        payout.mark_as_failed(PAYOUT_FAILURE_PROCESSING_ERROR, 'rail down')
        request = self.make_request()

        self.model_admin.retry_payouts(request, Payout.objects.all())

        payout.refresh_from_db()
        self.assertEqual(payout.status, PAYOUT_STATUS_SENT)
        self.assertIn('Retried 1 payouts', self.message_texts(request))

    def test_retry_skips_payouts_that_cannot_be_retried(self):
        self.make_payout(1000)
        request = self.make_request()

        self.model_admin.retry_payouts(request, Payout.objects.all())

        self.assertIn('No retryable payouts were selected', self.message_texts(request))
        self.rails['instant_transfer'].send.assert_not_called()
