from django.utils.translation import gettext_lazy as _


# ==========================================
# SUB-MERCHANTS
# ==========================================

SUB_MERCHANT_STATUS_PENDING = 'pending'
SUB_MERCHANT_STATUS_ACTIVE = 'active'
SUB_MERCHANT_STATUS_SUSPENDED = 'suspended'
SUB_MERCHANT_STATUS_CLOSED = 'closed'

SUB_MERCHANT_STATUSES = (
    (SUB_MERCHANT_STATUS_PENDING, _('Pending')),
    (SUB_MERCHANT_STATUS_ACTIVE, _('Active')),
    (SUB_MERCHANT_STATUS_SUSPENDED, _('Suspended')),
    (SUB_MERCHANT_STATUS_CLOSED, _('Closed')),
)

SETTLEMENT_CYCLE_D0 = 'D+0'
SETTLEMENT_CYCLE_D1 = 'D+1'
SETTLEMENT_CYCLE_D2 = 'D+2'
SETTLEMENT_CYCLE_D3 = 'D+3'
SETTLEMENT_CYCLE_WEEKLY = 'WEEKLY'
SETTLEMENT_CYCLE_BIWEEKLY = 'BIWEEKLY'
SETTLEMENT_CYCLE_MONTHLY = 'MONTHLY'

SETTLEMENT_CYCLES = (
    (SETTLEMENT_CYCLE_D0, _('Same day (D+0)')),
    (SETTLEMENT_CYCLE_D1, _('Next day (D+1)')),
    (SETTLEMENT_CYCLE_D2, _('Two days (D+2)')),
    (SETTLEMENT_CYCLE_D3, _('Three days (D+3)')),
    (SETTLEMENT_CYCLE_WEEKLY, _('Weekly')),
    (SETTLEMENT_CYCLE_BIWEEKLY, _('Biweekly')),
    (SETTLEMENT_CYCLE_MONTHLY, _('Monthly')),
)

DAILY_SETTLEMENT_CYCLES = (
    SETTLEMENT_CYCLE_D0,
    SETTLEMENT_CYCLE_D1,
    SETTLEMENT_CYCLE_D2,
    SETTLEMENT_CYCLE_D3,
)

# Length of the settlement window in days. MONTHLY is a fixed 30-day
# lookback, not a calendar month.
SETTLEMENT_CYCLE_DAYS = {
    SETTLEMENT_CYCLE_D0: 1,
    SETTLEMENT_CYCLE_D1: 1,
    SETTLEMENT_CYCLE_D2: 1,
    SETTLEMENT_CYCLE_D3: 1,
    SETTLEMENT_CYCLE_WEEKLY: 7,
    SETTLEMENT_CYCLE_BIWEEKLY: 14,
    SETTLEMENT_CYCLE_MONTHLY: 30,
}

# Days between settlement approval and the payout's scheduled date
PAYOUT_DELAY_DAYS = {
    SETTLEMENT_CYCLE_D0: 0,
    SETTLEMENT_CYCLE_D1: 1,
    SETTLEMENT_CYCLE_D2: 2,
    SETTLEMENT_CYCLE_D3: 3,
}

# 0 = Sunday ... 6 = Saturday
DAYS_OF_WEEK = (
    (0, _('Sunday')),
    (1, _('Monday')),
    (2, _('Tuesday')),
    (3, _('Wednesday')),
    (4, _('Thursday')),
    (5, _('Friday')),
    (6, _('Saturday')),
)


# ==========================================
# LEDGER
# ==========================================

TRANSACTION_STATUS_AUTHORIZED = 'authorized'
TRANSACTION_STATUS_CAPTURED = 'captured'
TRANSACTION_STATUS_FAILED = 'failed'
TRANSACTION_STATUS_VOIDED = 'voided'

TRANSACTION_STATUSES = (
    (TRANSACTION_STATUS_AUTHORIZED, _('Authorized')),
    (TRANSACTION_STATUS_CAPTURED, _('Captured')),
    (TRANSACTION_STATUS_FAILED, _('Failed')),
    (TRANSACTION_STATUS_VOIDED, _('Voided')),
)

PAYMENT_METHOD_CARD = 'card'
PAYMENT_METHOD_MEEZA = 'meeza'
PAYMENT_METHOD_CASH_VOUCHER = 'cash_voucher'
PAYMENT_METHOD_WALLET = 'wallet'
PAYMENT_METHOD_INSTANT_TRANSFER = 'instant_transfer'

PAYMENT_METHODS = (
    (PAYMENT_METHOD_CARD, _('Card')),
    (PAYMENT_METHOD_MEEZA, _('Meeza card / QR')),
    (PAYMENT_METHOD_CASH_VOUCHER, _('Cash voucher')),
    (PAYMENT_METHOD_WALLET, _('Mobile wallet')),
    (PAYMENT_METHOD_INSTANT_TRANSFER, _('Instant transfer')),
)

REFUND_STATUS_PENDING = 'pending'
REFUND_STATUS_COMPLETED = 'completed'
REFUND_STATUS_FAILED = 'failed'

REFUND_STATUSES = (
    (REFUND_STATUS_PENDING, _('Pending')),
    (REFUND_STATUS_COMPLETED, _('Completed')),
    (REFUND_STATUS_FAILED, _('Failed')),
)

DISPUTE_STATUS_OPEN = 'open'
DISPUTE_STATUS_WON = 'won'
DISPUTE_STATUS_LOST = 'lost'

DISPUTE_STATUSES = (
    (DISPUTE_STATUS_OPEN, _('Open')),
    (DISPUTE_STATUS_WON, _('Won')),
    (DISPUTE_STATUS_LOST, _('Lost')),
)

RESERVE_STATUS_HELD = 'held'
RESERVE_STATUS_RELEASED = 'released'

RESERVE_STATUSES = (
    (RESERVE_STATUS_HELD, _('Held')),
    (RESERVE_STATUS_RELEASED, _('Released')),
)

RESERVE_TYPE_ROLLING = 'rolling'

RESERVE_TYPES = (
    (RESERVE_TYPE_ROLLING, _('Rolling')),
)


# ==========================================
# SETTLEMENTS
# ==========================================

SETTLEMENT_STATUS_CALCULATED = 'calculated'
SETTLEMENT_STATUS_APPROVED = 'approved'
SETTLEMENT_STATUS_PAID = 'paid'
SETTLEMENT_STATUS_PAYOUT_FAILED = 'payout_failed'
SETTLEMENT_STATUS_ON_HOLD = 'on_hold'

SETTLEMENT_STATUSES = (
    (SETTLEMENT_STATUS_CALCULATED, _('Calculated')),
    (SETTLEMENT_STATUS_APPROVED, _('Approved')),
    (SETTLEMENT_STATUS_PAID, _('Paid')),
    (SETTLEMENT_STATUS_PAYOUT_FAILED, _('Payout failed')),
    (SETTLEMENT_STATUS_ON_HOLD, _('On hold')),
)

SETTLEMENT_TRANSITIONS = {
    SETTLEMENT_STATUS_CALCULATED: (SETTLEMENT_STATUS_APPROVED, SETTLEMENT_STATUS_ON_HOLD),
    SETTLEMENT_STATUS_APPROVED: (
        SETTLEMENT_STATUS_PAID,
        SETTLEMENT_STATUS_PAYOUT_FAILED,
        SETTLEMENT_STATUS_ON_HOLD,
    ),
    SETTLEMENT_STATUS_PAID: (),
    SETTLEMENT_STATUS_PAYOUT_FAILED: (),
    SETTLEMENT_STATUS_ON_HOLD: (),
}

SETTLEMENT_ITEM_TRANSACTION = 'transaction'
SETTLEMENT_ITEM_REFUND = 'refund'
SETTLEMENT_ITEM_DISPUTE = 'dispute'
SETTLEMENT_ITEM_RESERVE_HELD = 'reserve_held'
SETTLEMENT_ITEM_RESERVE_RELEASED = 'reserve_released'

SETTLEMENT_ITEM_TYPES = (
    (SETTLEMENT_ITEM_TRANSACTION, _('Transaction')),
    (SETTLEMENT_ITEM_REFUND, _('Refund')),
    (SETTLEMENT_ITEM_DISPUTE, _('Dispute')),
    (SETTLEMENT_ITEM_RESERVE_HELD, _('Reserve held')),
    (SETTLEMENT_ITEM_RESERVE_RELEASED, _('Reserve released')),
)


# ==========================================
# PAYOUTS
# ==========================================

PAYOUT_METHOD_INSTANT_TRANSFER = 'instant_transfer'
PAYOUT_METHOD_BANK_TRANSFER = 'bank_transfer'
PAYOUT_METHOD_WALLET = 'wallet'

PAYOUT_METHODS = (
    (PAYOUT_METHOD_INSTANT_TRANSFER, _('Instant transfer')),
    (PAYOUT_METHOD_BANK_TRANSFER, _('Bank transfer')),
    (PAYOUT_METHOD_WALLET, _('Mobile wallet')),
)

PAYOUT_STATUS_PENDING = 'pending'
PAYOUT_STATUS_APPROVED = 'approved'
PAYOUT_STATUS_PROCESSING = 'processing'
PAYOUT_STATUS_SENT = 'sent'
PAYOUT_STATUS_COMPLETED = 'completed'
PAYOUT_STATUS_FAILED = 'failed'
PAYOUT_STATUS_RETURNED = 'returned'
PAYOUT_STATUS_CANCELLED = 'cancelled'

PAYOUT_STATUSES = (
    (PAYOUT_STATUS_PENDING, _('Pending approval')),
    (PAYOUT_STATUS_APPROVED, _('Approved')),
    (PAYOUT_STATUS_PROCESSING, _('Processing')),
    (PAYOUT_STATUS_SENT, _('Sent')),
    (PAYOUT_STATUS_COMPLETED, _('Completed')),
    (PAYOUT_STATUS_FAILED, _('Failed')),
    (PAYOUT_STATUS_RETURNED, _('Returned')),
    (PAYOUT_STATUS_CANCELLED, _('Cancelled')),
)

PAYOUT_TRANSITIONS = {
    PAYOUT_STATUS_PENDING: (PAYOUT_STATUS_APPROVED, PAYOUT_STATUS_CANCELLED),
    PAYOUT_STATUS_APPROVED: (PAYOUT_STATUS_PROCESSING,),
    PAYOUT_STATUS_PROCESSING: (PAYOUT_STATUS_SENT, PAYOUT_STATUS_COMPLETED, PAYOUT_STATUS_FAILED),
    PAYOUT_STATUS_SENT: (PAYOUT_STATUS_COMPLETED, PAYOUT_STATUS_FAILED, PAYOUT_STATUS_RETURNED),
    PAYOUT_STATUS_FAILED: (PAYOUT_STATUS_APPROVED,),
    PAYOUT_STATUS_COMPLETED: (),
    PAYOUT_STATUS_RETURNED: (),
    PAYOUT_STATUS_CANCELLED: (),
}

# Payouts waiting on the rail to tell us how they ended
PAYOUT_IN_FLIGHT_STATUSES = (PAYOUT_STATUS_PROCESSING, PAYOUT_STATUS_SENT)

PAYOUT_FAILURE_PROCESSING_ERROR = 'PROCESSING_ERROR'
PAYOUT_FAILURE_REJECTED = 'REJECTED'
PAYOUT_FAILURE_BATCH_ERROR = 'BATCH_ERROR'
PAYOUT_FAILURE_RECONCILIATION = 'RECONCILIATION_FAILED'
PAYOUT_FAILURE_RETURNED = 'RETURNED'

# Failures that a retry cannot fix
NON_RETRYABLE_FAILURE_CODES = (
    PAYOUT_FAILURE_REJECTED,
    PAYOUT_FAILURE_RETURNED,
)

PROCESSOR_STATUS_UNKNOWN = 'unknown'

CONFIRMATION_STATUS_COMPLETED = 'completed'
CONFIRMATION_STATUS_FAILED = 'failed'
CONFIRMATION_STATUS_RETURNED = 'returned'

CONFIRMATION_STATUSES = (
    (CONFIRMATION_STATUS_COMPLETED, _('Completed')),
    (CONFIRMATION_STATUS_FAILED, _('Failed')),
    (CONFIRMATION_STATUS_RETURNED, _('Returned')),
)

BATCH_STATUS_PROCESSING = 'processing'
BATCH_STATUS_COMPLETED = 'completed'
BATCH_STATUS_FAILED = 'failed'
BATCH_STATUS_PARTIALLY_COMPLETED = 'partially_completed'

BATCH_STATUSES = (
    (BATCH_STATUS_PROCESSING, _('Processing')),
    (BATCH_STATUS_COMPLETED, _('Completed')),
    (BATCH_STATUS_FAILED, _('Failed')),
    (BATCH_STATUS_PARTIALLY_COMPLETED, _('Partially completed')),
)


# ==========================================
# NOTIFICATIONS
# ==========================================

NOTIFICATION_SETTLEMENT_CREATED = 'settlement_created'
NOTIFICATION_PAYOUT_SENT = 'payout_sent'
NOTIFICATION_PAYOUT_COMPLETED = 'payout_completed'
NOTIFICATION_PAYOUT_FAILED = 'payout_failed'
NOTIFICATION_OPERATIONAL_ALERT = 'operational_alert'

NOTIFICATION_KINDS = (
    (NOTIFICATION_SETTLEMENT_CREATED, _('Settlement created')),
    (NOTIFICATION_PAYOUT_SENT, _('Payout sent')),
    (NOTIFICATION_PAYOUT_COMPLETED, _('Payout completed')),
    (NOTIFICATION_PAYOUT_FAILED, _('Payout failed')),
    (NOTIFICATION_OPERATIONAL_ALERT, _('Operational alert')),
)
