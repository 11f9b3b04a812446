from payfac.models.sub_merchant import SubMerchant, SubMerchantQuerySet, SubMerchantManager
from payfac.models.transaction import (
    LedgerQuerySet,
    LedgerManager,
    Transaction,
    TransactionQuerySet,
    TransactionManager
)
from payfac.models.refund import Refund, RefundQuerySet, RefundManager
from payfac.models.dispute import Dispute, DisputeQuerySet, DisputeManager
from payfac.models.reserve import Reserve, ReserveQuerySet, ReserveManager
from payfac.models.settlement import (
    Settlement,
    SettlementQuerySet,
    SettlementManager,
    SettlementItem
)
from payfac.models.payout import (
    Payout,
    PayoutQuerySet,
    PayoutManager,
    PayoutBatch,
    DESTINATION_FIELDS,
    get_missing_destination_fields,
    derive_batch_status
)


__all__ = [
    'SubMerchant',
    'SubMerchantQuerySet',
    'SubMerchantManager',
    'LedgerQuerySet',
    'LedgerManager',
    'Transaction',
    'TransactionQuerySet',
    'TransactionManager',
    'Refund',
    'RefundQuerySet',
    'RefundManager',
    'Dispute',
    'DisputeQuerySet',
    'DisputeManager',
    'Reserve',
    'ReserveQuerySet',
    'ReserveManager',
    'Settlement',
    'SettlementQuerySet',
    'SettlementManager',
    'SettlementItem',
    'Payout',
    'PayoutQuerySet',
    'PayoutManager',
    'PayoutBatch',
    'DESTINATION_FIELDS',
    'get_missing_destination_fields',
    'derive_batch_status',
]
