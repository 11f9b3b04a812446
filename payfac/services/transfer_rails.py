"""
Transfer rails

One class per payout method, each wrapping the HTTP API of the network that
moves the money. Every rail answers `send()` with a TransferResult:

- success and completed: the rail confirmed the transfer synchronously
- success, not completed: accepted, the final outcome arrives later
- not success: the rail declined the transfer; retrying will not help

Transport problems are raised instead of returned. TransferRailUnavailable
(connection error, 5xx, 429 throttling) is safe to retry. TransferTimeout
(including 408 and a 409 duplicate reference) means the outcome is unknown
and must be reconciled, never retried blindly.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests
from django.utils.module_loading import import_string

from payfac.settings import get_payfac_setting
from payfac.constants import (
    PAYOUT_METHOD_INSTANT_TRANSFER,
    PAYOUT_METHOD_BANK_TRANSFER,
    PAYOUT_METHOD_WALLET,
)
from payfac.exceptions import (
    PayoutError,
    TransferRailUnavailable,
    TransferTimeout,
    DuplicateTransfer,
    InvalidRailResponse,
)
from payfac.utils.money import quantize_amount


logger = logging.getLogger(__name__)

COMPLETED_STATUSES = ('success', 'successful', 'completed')
ACCEPTED_STATUSES = ('pending', 'processing', 'accepted', 'queued', 'sent')
DECLINED_STATUSES = ('failed', 'declined', 'rejected')


class TransferResult:
    """
    Outcome of a single transfer request

    Attributes:
        success: The rail accepted (or completed) the transfer
        provider_reference: The rail's id for the transfer
        message: Human readable status from the rail
        completed: The rail already confirmed the money arrived
        status: Raw status string the rail answered with
        data: Full response body
    """

    def __init__(self, success, provider_reference='', message='', completed=False, status='', data=None):
        self.success = success
        self.provider_reference = provider_reference or ''
        self.message = message or ''
        self.completed = completed
        self.status = status or ''
        self.data = data or {}

    @property
    def declined(self):
        return not self.success

    def __repr__(self):
        return (
            f"<TransferResult success={self.success} completed={self.completed} "
            f"reference={self.provider_reference} status={self.status}>"
        )


class BatchTransferResult:
    """
    Outcome of a batch submission

    Attributes:
        success: The rail accepted the batch as a whole
        details: Full response body
        failed_items: Members the rail rejected individually, as dicts with
            'reference' and 'message' keys
        provider_reference: The rail's id for the batch
    """

    def __init__(self, success, details=None, failed_items=None, provider_reference='', message=''):
        self.success = success
        self.details = details or {}
        self.failed_items = failed_items or []
        self.provider_reference = provider_reference or ''
        self.message = message or ''

    @property
    def failed_references(self):
        return {item.get('reference') for item in self.failed_items}


class TransferRail:
    """
    Base class for HTTP JSON transfer rails

    Subclasses set the method, the settings holding their URL and key, and
    build the request payload for a destination.
    """

    method = None
    api_url_setting = None
    api_key_setting = None
    transfer_endpoint = 'transfers'
    status_endpoint = 'transfers/{reference}'

    def __init__(self, api_url=None, api_key=None, timeout=None):
        self.api_url = api_url if api_url is not None else get_payfac_setting(self.api_url_setting)
        self.api_key = api_key if api_key is not None else get_payfac_setting(self.api_key_setting)
        self.timeout = timeout or get_payfac_setting('RAIL_TIMEOUT')

        # Ensure trailing slash for URL joining
        if self.api_url and not self.api_url.endswith('/'):
            self.api_url += '/'

    def _get_headers(self):
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }

    def _make_request(self, method, endpoint, allow_not_found=False, **kwargs):
        """
        Make a request to the rail API

        Args:
            method (str): HTTP method to use
            endpoint (str): API endpoint, relative to the rail URL
            allow_not_found (bool): Return (404, {}) instead of parsing the body
            **kwargs: Additional arguments to pass to requests

        Returns:
            tuple: (HTTP status code, parsed JSON body)

        Raises:
            TransferTimeout: If the rail did not answer in time (or answered 408)
            DuplicateTransfer: If the rail answered 409 for our reference
            TransferRailUnavailable: On connection errors, 429 and 5xx answers
            InvalidRailResponse: If the body is not JSON
        """
        if not self.api_url:
            raise TransferRailUnavailable(message=f"No API URL configured for {self.method} rail")

        url = urljoin(self.api_url, endpoint)

        try:
            response = requests.request(
                method=method,
                url=url,
                headers=self._get_headers(),
                timeout=self.timeout,
                **kwargs
            )
        except requests.Timeout as e:
            logger.error(f"{self.method} rail request to {endpoint} timed out: {str(e)}")
            raise TransferTimeout(message=str(e))
        except requests.RequestException as e:
            logger.error(f"{self.method} rail request to {endpoint} failed: {str(e)}")
            raise TransferRailUnavailable(message=str(e))

        if response.status_code >= 500 or response.status_code == 429:
            raise TransferRailUnavailable(
                message=response.text[:200],
                status_code=response.status_code
            )

        if response.status_code == 408:
            raise TransferTimeout(message=response.text[:200], status_code=response.status_code)

        if response.status_code == 409:
            logger.warning(f"{self.method} rail reports a duplicate request to {endpoint}")
            raise DuplicateTransfer(message=response.text[:200], status_code=response.status_code)

        if response.status_code == 404 and allow_not_found:
            return response.status_code, {}

        if response.status_code == 204:
            return response.status_code, {}

        try:
            response_data = response.json()
        except ValueError:
            raise InvalidRailResponse(message=response.text[:200], status_code=response.status_code)

        if not isinstance(response_data, dict):
            raise InvalidRailResponse(message='Expected a JSON object', status_code=response.status_code)

        return response.status_code, response_data

    def _result_from_response(self, status_code, data):
        """Turn a rail answer into a TransferResult"""
        status = str(data.get('status', '')).lower()
        provider_reference = data.get('reference') or data.get('transaction_id') or data.get('id') or ''
        message = data.get('message', '')

        if 400 <= status_code < 500 or status in DECLINED_STATUSES:
            return TransferResult(
                success=False,
                provider_reference=provider_reference,
                message=message or f"Declined by {self.method} rail",
                status=status or str(status_code),
                data=data
            )

        if status in COMPLETED_STATUSES:
            return TransferResult(True, provider_reference, message, completed=True, status=status, data=data)

        if status in ACCEPTED_STATUSES:
            return TransferResult(True, provider_reference, message, completed=False, status=status, data=data)

        raise InvalidRailResponse(message=f"Unknown transfer status: {status or 'missing'}", status_code=status_code)

    @staticmethod
    def format_amount(amount):
        """Amount as a two-place decimal string"""
        return str(quantize_amount(amount))

    def build_payload(self, amount, currency, destination, reference, narration) -> Dict[str, Any]:
        raise NotImplementedError

    def send(self, amount, currency, destination, reference, narration='') -> TransferResult:
        """
        Send money to a destination

        Args:
            amount: Amount to send (Money or Decimal)
            currency (str): Currency code
            destination (dict): Destination fields for this rail
            reference (str): Our payout reference, used as idempotency key
            narration (str): Text shown to the recipient

        Returns:
            TransferResult
        """
        payload = self.build_payload(amount, currency, destination, reference, narration)
        logger.info(f"Sending {self.format_amount(amount)} {currency} via {self.method} rail, reference {reference}")

        status_code, data = self._make_request('POST', self.transfer_endpoint, json=payload)

        result = self._result_from_response(status_code, data)
        logger.info(f"{self.method} rail answered {result.status} for {reference}")
        return result

    def check_status(self, provider_reference) -> Optional[TransferResult]:
        """
        Ask the rail how a transfer ended

        Only a status in the body counts as a decline. A status query the rail
        refuses (bad key, bad request) says nothing about the transfer itself.

        Returns:
            TransferResult, or None when the rail does not know the transfer

        Raises:
            TransferRailUnavailable: If the rail refused the status query
        """
        endpoint = self.status_endpoint.format(reference=provider_reference)
        status_code, data = self._make_request('GET', endpoint, allow_not_found=True)

        if status_code == 404:
            logger.warning(f"{self.method} rail does not know transfer {provider_reference}")
            return None

        if status_code >= 400:
            raise TransferRailUnavailable(
                message=data.get('message') or f"Status query for {provider_reference} refused",
                status_code=status_code
            )

        return self._result_from_response(status_code, data)


class InstantTransferRail(TransferRail):
    """Instant bank transfer network, addressed by mobile number or payment address"""

    method = PAYOUT_METHOD_INSTANT_TRANSFER
    api_url_setting = 'INSTANT_TRANSFER_API_URL'
    api_key_setting = 'INSTANT_TRANSFER_API_KEY'

    def build_payload(self, amount, currency, destination, reference, narration):
        return {
            'amount': self.format_amount(amount),
            'currency': str(currency),
            'receiver_address': destination.get('instant_transfer_address'),
            'reference': reference,
            'narration': narration,
        }


class BankTransferRail(TransferRail):
    """Bank transfers, sent one by one or as a batch file"""

    method = PAYOUT_METHOD_BANK_TRANSFER
    api_url_setting = 'BANK_TRANSFER_API_URL'
    api_key_setting = 'BANK_TRANSFER_API_KEY'
    batch_endpoint = 'batches'

    def build_payload(self, amount, currency, destination, reference, narration):
        return {
            'amount': self.format_amount(amount),
            'currency': str(currency),
            'bank_code': destination.get('bank_code') or '',
            'account_number': destination.get('bank_account_number') or '',
            'account_name': destination.get('bank_account_name') or '',
            'iban': destination.get('iban') or '',
            'reference': reference,
            'narration': narration,
        }

    def submit_batch(self, batch_reference, transfers: List[Dict[str, Any]]) -> BatchTransferResult:
        """
        Submit several transfers as one batch

        Args:
            batch_reference (str): Our batch reference
            transfers (list): Dicts with amount, currency, destination,
                reference and narration keys

        Returns:
            BatchTransferResult
        """
        payload = {
            'batch_reference': batch_reference,
            'count': len(transfers),
            'total_amount': self.format_amount(
                sum((quantize_amount(t['amount']) for t in transfers), Decimal('0'))
            ),
            'transfers': [
                self.build_payload(
                    t['amount'], t['currency'], t['destination'], t['reference'], t.get('narration', '')
                )
                for t in transfers
            ],
        }

        logger.info(f"Submitting bank batch {batch_reference} with {len(transfers)} transfers")
        status_code, data = self._make_request('POST', self.batch_endpoint, json=payload)

        status = str(data.get('status', '')).lower()
        success = status_code < 400 and status not in DECLINED_STATUSES
        failed_items = data.get('failed_items') or data.get('failed') or []

        return BatchTransferResult(
            success=success,
            details=data,
            failed_items=failed_items if isinstance(failed_items, list) else [],
            provider_reference=data.get('reference') or data.get('batch_id') or '',
            message=data.get('message', '')
        )


class WalletTransferRail(TransferRail):
    """Mobile wallet disbursements"""

    method = PAYOUT_METHOD_WALLET
    api_url_setting = 'WALLET_API_URL'
    api_key_setting = 'WALLET_API_KEY'
    transfer_endpoint = 'disbursements'
    status_endpoint = 'disbursements/{reference}'

    def build_payload(self, amount, currency, destination, reference, narration):
        return {
            'amount': self.format_amount(amount),
            'currency': str(currency),
            'provider': destination.get('wallet_provider') or get_payfac_setting('DEFAULT_WALLET_PROVIDER'),
            'wallet_number': destination.get('wallet_number'),
            'reference': reference,
            'narration': narration,
        }


def get_transfer_rail(method):
    """
    Instantiate the rail configured for a payout method

    Raises:
        PayoutError: If no rail is configured for the method
    """
    rails = get_payfac_setting('TRANSFER_RAILS')
    if method not in rails:
        raise PayoutError(f"No transfer rail configured for {method}")
    return import_string(rails[method])()
