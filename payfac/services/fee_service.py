"""
Payout Fee Service

Fees charged for sending a payout, per payout method:
- Instant transfer: flat fee
- Mobile wallet: flat fee
- Bank transfer: tiered by amount
"""

import logging
from decimal import Decimal
from typing import Dict, Any
from djmoney.money import Money

from payfac.settings import get_payfac_setting
from payfac.constants import (
    PAYOUT_METHOD_INSTANT_TRANSFER,
    PAYOUT_METHOD_BANK_TRANSFER,
    PAYOUT_METHOD_WALLET,
)
from payfac.exceptions import PayoutError
from payfac.utils.money import to_money

logger = logging.getLogger(__name__)


class PayoutFeeCalculator:
    """
    Fee schedule for payouts

    The amounts come from settings so the schedule can change without a
    code change.
    """

    def calculate_fee(self, amount: Money, method: str) -> Money:
        """
        Calculate the fee for sending `amount` over `method`

        Args:
            amount: Payout amount
            method: Payout method

        Returns:
            Money: Fee in the payout currency

        Raises:
            PayoutError: If the method is unknown
        """
        currency = amount.currency

        if method == PAYOUT_METHOD_INSTANT_TRANSFER:
            fee = to_money(get_payfac_setting('INSTANT_TRANSFER_FEE'), currency)
        elif method == PAYOUT_METHOD_WALLET:
            fee = to_money(get_payfac_setting('WALLET_TRANSFER_FEE'), currency)
        elif method == PAYOUT_METHOD_BANK_TRANSFER:
            fee = self._calculate_tiered_bank_fee(amount)
        else:
            raise PayoutError(f"Unknown payout method: {method}")

        logger.debug(f"Payout fee for {amount} via {method}: {fee}")
        return fee

    def _calculate_tiered_bank_fee(self, amount: Money) -> Money:
        """
        Bank transfer fee from the configured tiers

        Default tiers:
        - <= 50,000: 10
        - > 50,000: 25
        """
        currency = amount.currency
        amount_value = amount.amount

        tiers = get_payfac_setting('BANK_TRANSFER_FEE_TIERS')

        for tier in tiers:
            max_amount = tier.get('max_amount')
            fee = tier.get('fee')

            if max_amount is None or amount_value <= Decimal(str(max_amount)):
                return to_money(fee, currency)

        # Amount above every bounded tier: charge the last tier
        return to_money(tiers[-1]['fee'], currency)

    def get_fee_schedule(self) -> Dict[str, Any]:
        """Current fee schedule, for display"""
        return {
            PAYOUT_METHOD_INSTANT_TRANSFER: {'flat_fee': get_payfac_setting('INSTANT_TRANSFER_FEE')},
            PAYOUT_METHOD_WALLET: {'flat_fee': get_payfac_setting('WALLET_TRANSFER_FEE')},
            PAYOUT_METHOD_BANK_TRANSFER: {'tiers': get_payfac_setting('BANK_TRANSFER_FEE_TIERS')},
        }
