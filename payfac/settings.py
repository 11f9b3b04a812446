from django.conf import settings
from django.utils.translation import gettext_lazy as _

# Default settings for the payfac app
PAYFAC_SETTINGS = {
    # Primary Keys
    'USE_UUID': getattr(settings, 'PAYFAC_USE_UUID', True),

    # Async Processing
    'USE_CELERY': getattr(settings, 'PAYFAC_USE_CELERY', False),

    # Currency used for every ledger, settlement and payout amount
    'CURRENCY': getattr(settings, 'PAYFAC_CURRENCY', 'EGP'),

    # ==========================================
    # SETTLEMENT
    # ==========================================

    # Settlements at or below this net amount are approved automatically
    'AUTO_APPROVE_THRESHOLD': getattr(settings, 'PAYFAC_AUTO_APPROVE_THRESHOLD', 50000),

    # Sub-merchants above this risk score always need manual approval
    'AUTO_APPROVE_MAX_RISK_SCORE': getattr(settings, 'PAYFAC_AUTO_APPROVE_MAX_RISK_SCORE', 70),

    'DEFAULT_MINIMUM_PAYOUT_AMOUNT': getattr(settings, 'PAYFAC_DEFAULT_MINIMUM_PAYOUT_AMOUNT', 100),
    'DEFAULT_RESERVE_DAYS': getattr(settings, 'PAYFAC_DEFAULT_RESERVE_DAYS', 90),

    # ==========================================
    # PAYOUTS
    # ==========================================

    # Payouts above this amount are created as pending and wait for an operator
    'PAYOUT_APPROVAL_THRESHOLD': getattr(settings, 'PAYFAC_PAYOUT_APPROVAL_THRESHOLD', 50000),
    'PAYOUT_MAX_RETRIES': getattr(settings, 'PAYFAC_PAYOUT_MAX_RETRIES', 3),
    'PAYOUT_NARRATION_PREFIX': getattr(settings, 'PAYFAC_PAYOUT_NARRATION_PREFIX', 'Payout'),

    # ==========================================
    # PAYOUT FEES
    # ==========================================

    'INSTANT_TRANSFER_FEE': getattr(settings, 'PAYFAC_INSTANT_TRANSFER_FEE', 5),
    'WALLET_TRANSFER_FEE': getattr(settings, 'PAYFAC_WALLET_TRANSFER_FEE', 3),

    # List of dicts with 'max_amount' and 'fee' keys
    # max_amount=None means unlimited (for last tier)
    'BANK_TRANSFER_FEE_TIERS': getattr(settings, 'PAYFAC_BANK_TRANSFER_FEE_TIERS', [
        {'max_amount': 50000, 'fee': 10},
        {'max_amount': None, 'fee': 25},
    ]),

    # ==========================================
    # TRANSFER RAILS
    # ==========================================

    # Seconds to wait between sequential instant/wallet calls
    'INSTANT_TRANSFER_DELAY': getattr(settings, 'PAYFAC_INSTANT_TRANSFER_DELAY', 0.5),
    'WALLET_TRANSFER_DELAY': getattr(settings, 'PAYFAC_WALLET_TRANSFER_DELAY', 0.3),

    # Timeout (seconds) for every outbound rail request
    'RAIL_TIMEOUT': getattr(settings, 'PAYFAC_RAIL_TIMEOUT', 30),

    'INSTANT_TRANSFER_API_URL': getattr(settings, 'PAYFAC_INSTANT_TRANSFER_API_URL', ''),
    'INSTANT_TRANSFER_API_KEY': getattr(settings, 'PAYFAC_INSTANT_TRANSFER_API_KEY', ''),
    'BANK_TRANSFER_API_URL': getattr(settings, 'PAYFAC_BANK_TRANSFER_API_URL', ''),
    'BANK_TRANSFER_API_KEY': getattr(settings, 'PAYFAC_BANK_TRANSFER_API_KEY', ''),
    'WALLET_API_URL': getattr(settings, 'PAYFAC_WALLET_API_URL', ''),
    'WALLET_API_KEY': getattr(settings, 'PAYFAC_WALLET_API_KEY', ''),
    'DEFAULT_WALLET_PROVIDER': getattr(settings, 'PAYFAC_DEFAULT_WALLET_PROVIDER', 'vodafone'),

    # Rail implementation per payout method (dotted paths)
    'TRANSFER_RAILS': getattr(settings, 'PAYFAC_TRANSFER_RAILS', {
        'instant_transfer': 'payfac.services.transfer_rails.InstantTransferRail',
        'bank_transfer': 'payfac.services.transfer_rails.BankTransferRail',
        'wallet': 'payfac.services.transfer_rails.WalletTransferRail',
    }),

    # ==========================================
    # RECONCILIATION
    # ==========================================

    # In-flight payouts older than this are polled against their rail
    'RECONCILIATION_STALE_MINUTES': getattr(settings, 'PAYFAC_RECONCILIATION_STALE_MINUTES', 30),

    # Shared token the confirmation boundary sends in X-Payfac-Callback-Token
    'PAYOUT_CALLBACK_TOKEN': getattr(settings, 'PAYFAC_PAYOUT_CALLBACK_TOKEN', ''),

    # ==========================================
    # NOTIFICATIONS
    # ==========================================

    'SEND_EMAIL_NOTIFICATIONS': getattr(settings, 'PAYFAC_SEND_EMAIL_NOTIFICATIONS', False),
    'EMAIL_SENDER': getattr(settings, 'PAYFAC_EMAIL_SENDER',
                            settings.DEFAULT_FROM_EMAIL if hasattr(settings, 'DEFAULT_FROM_EMAIL') else ''),
    'OPERATIONS_ALERT_EMAILS': getattr(settings, 'PAYFAC_OPERATIONS_ALERT_EMAILS', []),

    # Export Settings
    'EXPORT_PAGESIZE': getattr(settings, 'PAYFAC_EXPORT_PAGESIZE', 'A4'),
    'EXPORT_ORIENTATION': getattr(settings, 'PAYFAC_EXPORT_ORIENTATION', 'portrait'),
}


def get_payfac_setting(name):
    """
    Helper function to get a specific payfac setting
    """
    if name not in PAYFAC_SETTINGS:
        raise ValueError(_("Unknown setting: {name}").format(name=name))
    return PAYFAC_SETTINGS[name]
