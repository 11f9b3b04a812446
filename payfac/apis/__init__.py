from payfac.apis.settlement_api import SettlementViewSet
from payfac.apis.payout_api import PayoutViewSet, PayoutBatchViewSet
from payfac.apis.webhook_api import payout_confirmation_webhook


__all__ = [
    'SettlementViewSet',
    'PayoutViewSet',
    'PayoutBatchViewSet',
    'payout_confirmation_webhook',
]
