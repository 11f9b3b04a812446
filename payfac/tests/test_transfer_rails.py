"""
Test cases for the transfer rails
HTTP calls are mocked at requests.request
"""
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.test import TestCase

from payfac.services.transfer_rails import (
    InstantTransferRail,
    BankTransferRail,
    WalletTransferRail,
    get_transfer_rail,
)
from payfac.exceptions import (
    PayoutError,
    TransferRailUnavailable,
    TransferTimeout,
    DuplicateTransfer,
    InvalidRailResponse,
)


def mock_response(status_code=200, data=None, text=''):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(data, Exception):
        response.json.side_effect = data
    else:
        response.json.return_value = data if data is not None else {}
    return response


@patch('payfac.services.transfer_rails.requests.request')
class InstantTransferRailTests(TestCase):
    """Tests for the instant transfer rail"""

    def setUp(self):
        self.rail = InstantTransferRail(api_url='https://instant.example.com/api', api_key='sk_test', timeout=5)
        self.destination = {'instant_transfer_address': '01000000001'}

    def send(self):
        return self.rail.send(Decimal('995'), 'EGP', self.destination, 'PO-20240315-ABC123', 'Payout PO-1')

    def test_accepted_transfer(self, mock_request):
        mock_request.return_value = mock_response(200, {'status': 'pending', 'reference': 'TRX-1'})

        result = self.send()

        self.assertTrue(result.success)
        self.assertFalse(result.completed)
        self.assertEqual(result.provider_reference, 'TRX-1')

        kwargs = mock_request.call_args[1]
        self.assertEqual(kwargs['method'], 'POST')
        self.assertEqual(kwargs['url'], 'https://instant.example.com/api/transfers')
        self.assertEqual(kwargs['timeout'], 5)
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer sk_test')
        self.assertEqual(kwargs['json'], {
            'amount': '995.00',
            'currency': 'EGP',
            'receiver_address': '01000000001',
            'reference': 'PO-20240315-ABC123',
            'narration': 'Payout PO-1',
        })

    def test_completed_transfer(self, mock_request):
        mock_request.return_value = mock_response(200, {'status': 'SUCCESS', 'transaction_id': 'TRX-2'})

        result = self.send()

        self.assertTrue(result.success)
        self.assertTrue(result.completed)
        self.assertEqual(result.provider_reference, 'TRX-2')

    def test_client_error_is_declined(self, mock_request):
        mock_request.return_value = mock_response(400, {'message': 'Invalid receiver'})

        result = self.send()

        self.assertFalse(result.success)
        self.assertTrue(result.declined)
        self.assertEqual(result.message, 'Invalid receiver')

    def test_declined_status(self, mock_request):
        mock_request.return_value = mock_response(200, {'status': 'rejected'})

        self.assertFalse(self.send().success)

    def test_server_error_is_unavailable(self, mock_request):
        mock_request.return_value = mock_response(503, text='Service Unavailable')

        with self.assertRaises(TransferRailUnavailable) as ctx:
            self.send()
        self.assertEqual(ctx.exception.status_code, 503)

    def test_rate_limited_is_unavailable(self, mock_request):
        mock_request.return_value = mock_response(429, {'message': 'Too many requests'})

        with self.assertRaises(TransferRailUnavailable) as ctx:
            self.send()
        self.assertEqual(ctx.exception.status_code, 429)

    def test_request_timeout_answer(self, mock_request):
        mock_request.return_value = mock_response(408, text='Request Timeout')

        with self.assertRaises(TransferTimeout):
            self.send()

    def test_duplicate_reference(self, mock_request):
        """A 409 means the rail already has this reference; the outcome is unknown"""
        mock_request.return_value = mock_response(409, {'message': 'Duplicate reference'})

        with self.assertRaises(DuplicateTransfer):
            self.send()

    def test_timeout(self, mock_request):
        mock_request.side_effect = requests.Timeout('read timed out')

        with self.assertRaises(TransferTimeout):
            self.send()

    def test_connection_error(self, mock_request):
        mock_request.side_effect = requests.ConnectionError('refused')

        with self.assertRaises(TransferRailUnavailable):
            self.send()

    def test_non_json_body(self, mock_request):
        mock_request.return_value = mock_response(200, ValueError('no json'), text='<html>')

        with self.assertRaises(InvalidRailResponse):
            self.send()

    def test_unknown_status(self, mock_request):
        mock_request.return_value = mock_response(200, {'status': 'teleported'})

        with self.assertRaises(InvalidRailResponse):
            self.send()

    def test_missing_url(self, mock_request):
        rail = InstantTransferRail(api_url='', api_key='sk_test')

        with self.assertRaises(TransferRailUnavailable):
            rail.send(Decimal('10'), 'EGP', self.destination, 'PO-1')
        mock_request.assert_not_called()

    def test_check_status(self, mock_request):
        mock_request.return_value = mock_response(200, {'status': 'completed', 'reference': 'TRX-1'})

        result = self.rail.check_status('TRX-1')

        self.assertTrue(result.completed)
        self.assertEqual(mock_request.call_args[1]['url'], 'https://instant.example.com/api/transfers/TRX-1')

    def test_check_status_unknown_transfer(self, mock_request):
        mock_request.return_value = mock_response(404, {'message': 'Not found'})

        self.assertIsNone(self.rail.check_status('TRX-404'))

    def test_check_status_unknown_transfer_html_page(self, mock_request):
        mock_request.return_value = mock_response(404, ValueError('no json'), text='<html>Not Found</html>')

        self.assertIsNone(self.rail.check_status('TRX-404'))

    def test_check_status_refused_query(self, mock_request):
        """A refused status query is not a declined transfer"""
        for status_code in (400, 401, 403, 429):
            mock_request.return_value = mock_response(status_code, {'message': 'Unauthorized'})

            with self.assertRaises(TransferRailUnavailable):
                self.rail.check_status('TRX-1')

    def test_check_status_declined_body(self, mock_request):
        mock_request.return_value = mock_response(200, {'status': 'failed', 'message': 'Account closed'})

        result = self.rail.check_status('TRX-1')

        self.assertFalse(result.success)
        self.assertEqual(result.message, 'Account closed')


@patch('payfac.services.transfer_rails.requests.request')
class BankTransferRailTests(TestCase):
    """Tests for the bank transfer rail"""

    def setUp(self):
        self.rail = BankTransferRail(api_url='https://bank.example.com/api/', api_key='sk_bank')
        self.transfers = [
            {
                'amount': Decimal('90'),
                'currency': 'EGP',
                'destination': {'bank_code': 'CIB', 'bank_account_number': '1', 'bank_account_name': 'A'},
                'reference': 'PO-1',
                'narration': 'Payout PO-1',
            },
            {
                'amount': Decimal('190.5'),
                'currency': 'EGP',
                'destination': {'iban': 'EG380019000500000000263180002'},
                'reference': 'PO-2',
            },
        ]

    def test_submit_batch(self, mock_request):
        mock_request.return_value = mock_response(200, {
            'status': 'accepted',
            'batch_id': 'B-1',
            'failed_items': [{'reference': 'PO-2', 'message': 'Invalid IBAN'}],
        })

        result = self.rail.submit_batch('BAT-20240315-AB12', self.transfers)

        self.assertTrue(result.success)
        self.assertEqual(result.provider_reference, 'B-1')
        self.assertEqual(result.failed_references, {'PO-2'})

        kwargs = mock_request.call_args[1]
        self.assertEqual(kwargs['url'], 'https://bank.example.com/api/batches')
        payload = kwargs['json']
        self.assertEqual(payload['count'], 2)
        self.assertEqual(payload['total_amount'], '280.50')
        self.assertEqual(payload['transfers'][0]['account_number'], '1')
        self.assertEqual(payload['transfers'][1]['iban'], 'EG380019000500000000263180002')

    def test_rejected_batch(self, mock_request):
        mock_request.return_value = mock_response(422, {'status': 'rejected', 'message': 'Bad file'})

        result = self.rail.submit_batch('BAT-1', self.transfers)

        self.assertFalse(result.success)
        self.assertEqual(result.message, 'Bad file')

    def test_duplicate_batch_reference(self, mock_request):
        mock_request.return_value = mock_response(409, {'message': 'Batch already submitted'})

        with self.assertRaises(DuplicateTransfer):
            self.rail.submit_batch('BAT-1', self.transfers)


@patch('payfac.services.transfer_rails.requests.request')
class WalletTransferRailTests(TestCase):

    def test_default_provider(self, mock_request):
        mock_request.return_value = mock_response(200, {'status': 'processing', 'id': 'W-1'})
        rail = WalletTransferRail(api_url='https://wallet.example.com/api/', api_key='sk_wallet')

        result = rail.send(Decimal('50'), 'EGP', {'wallet_number': '01000000001'}, 'PO-3')

        self.assertEqual(result.provider_reference, 'W-1')
        kwargs = mock_request.call_args[1]
        self.assertEqual(kwargs['url'], 'https://wallet.example.com/api/disbursements')
        self.assertEqual(kwargs['json']['provider'], 'vodafone')


class TransferRailFactoryTests(TestCase):

    def test_configured_rails(self):
        self.assertIsInstance(get_transfer_rail('instant_transfer'), InstantTransferRail)
        self.assertIsInstance(get_transfer_rail('bank_transfer'), BankTransferRail)
        self.assertIsInstance(get_transfer_rail('wallet'), WalletTransferRail)

    def test_unknown_method(self):
        with self.assertRaises(PayoutError):
            get_transfer_rail('cheque')
