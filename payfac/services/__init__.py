from payfac.services.fee_service import PayoutFeeCalculator
from payfac.services.notification_service import NotificationService
from payfac.services.transfer_rails import (
    TransferRail,
    InstantTransferRail,
    BankTransferRail,
    WalletTransferRail,
)
from payfac.services.payout_service import PayoutService
from payfac.services.payout_batch_service import PayoutBatchService
from payfac.services.reconciliation_service import ReconciliationService
from payfac.services.settlement_service import SettlementService
from payfac.services.settlement_scheduler import SettlementScheduler


__all__ = [
    'PayoutFeeCalculator',
    'NotificationService',
    'TransferRail',
    'InstantTransferRail',
    'BankTransferRail',
    'WalletTransferRail',
    'PayoutService',
    'PayoutBatchService',
    'ReconciliationService',
    'SettlementService',
    'SettlementScheduler',
]
