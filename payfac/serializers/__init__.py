"""
Payfac serializers module
"""
from payfac.serializers.settlement_serializer import (
    SettlementSerializer,
    SettlementDetailSerializer,
    SettlementListSerializer,
    SettlementItemSerializer,
    SettlementRejectSerializer,
)
from payfac.serializers.payout_serializer import (
    PayoutSerializer,
    PayoutCreateSerializer,
    PayoutCancelSerializer,
    PayoutBatchSerializer,
    PayoutConfirmationSerializer,
)


__all__ = [
    'SettlementSerializer',
    'SettlementDetailSerializer',
    'SettlementListSerializer',
    'SettlementItemSerializer',
    'SettlementRejectSerializer',
    'PayoutSerializer',
    'PayoutCreateSerializer',
    'PayoutCancelSerializer',
    'PayoutBatchSerializer',
    'PayoutConfirmationSerializer',
]
