"""
Permissions for the payfac API
"""
import hmac

from rest_framework import permissions

from payfac.settings import get_payfac_setting


CALLBACK_TOKEN_HEADER = 'HTTP_X_PAYFAC_CALLBACK_TOKEN'


class IsOperator(permissions.IsAdminUser):
    """Settlements and payouts are operated by staff users only"""
    pass


class HasPayoutCallbackToken(permissions.BasePermission):
    """
    Permission for the transfer confirmation webhook

    The caller must send the shared token from PAYFAC_PAYOUT_CALLBACK_TOKEN in
    the X-Payfac-Callback-Token header. With no token configured every call
    is refused.
    """

    message = 'Invalid or missing callback token'

    def has_permission(self, request, view):
        expected = get_payfac_setting('PAYOUT_CALLBACK_TOKEN')
        if not expected:
            return False

        provided = request.META.get(CALLBACK_TOKEN_HEADER, '')
        return hmac.compare_digest(str(provided).encode(), str(expected).encode())
