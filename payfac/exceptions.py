from django.utils.translation import gettext_lazy as _


class PayfacError(Exception):
    """Base exception for all payfac related errors"""
    pass


class InvalidAmount(PayfacError):
    """Exception raised when an invalid amount is provided"""
    def __init__(self, amount=None):
        message = _("Invalid amount")
        if amount is not None:
            message = _("Invalid amount: {amount}").format(amount=amount)
        super().__init__(message)


class InvalidStateTransition(PayfacError):
    """Exception raised when a record is moved to a status its current status does not allow"""
    def __init__(self, current=None, target=None, obj=None):
        message = _("Invalid status transition")
        if current and target:
            message = _("Cannot move from {current} to {target}").format(
                current=current,
                target=target
            )
        if obj is not None:
            message = _("{message} ({obj})").format(message=message, obj=obj)
        super().__init__(message)
        self.current = current
        self.target = target


class SettlementError(PayfacError):
    """Exception raised when there is an error with a settlement"""
    def __init__(self, message=None, settlement_id=None):
        msg = _("Settlement error")
        if message:
            msg = _("Settlement error: {message}").format(message=message)
        if settlement_id:
            msg = _("{msg} (Settlement ID: {settlement_id})").format(msg=msg, settlement_id=settlement_id)
        super().__init__(msg)


class ConcurrentSettlementError(SettlementError):
    """Raised when ledger rows were claimed by another settlement run mid-calculation"""
    pass


class PayoutError(PayfacError):
    """Exception raised when there is an error with a payout"""
    def __init__(self, message=None, payout_id=None):
        msg = _("Payout error")
        if message:
            msg = _("Payout error: {message}").format(message=message)
        if payout_id:
            msg = _("{msg} (Payout ID: {payout_id})").format(msg=msg, payout_id=payout_id)
        super().__init__(msg)


class InvalidPayoutDestination(PayoutError):
    """Exception raised when a payout is missing a destination field its method needs"""
    def __init__(self, method=None, missing=None):
        message = _("Invalid payout destination")
        if method and missing:
            message = _("{method} payouts require: {fields}").format(
                method=method,
                fields=', '.join(missing)
            )
        super().__init__(message)
        self.method = method
        self.missing = missing or []


class TransferError(PayfacError):
    """Base exception for transfer rail failures"""
    def __init__(self, message=None, status_code=None, response=None):
        msg = _("Transfer rail error")
        if message:
            msg = _("Transfer rail error: {message}").format(message=message)
        if status_code:
            msg = _("{msg} (Status code: {status_code})").format(msg=msg, status_code=status_code)
        super().__init__(msg)
        self.response = response
        self.status_code = status_code


class TransferRailUnavailable(TransferError):
    """Transient rail failure (network error, 5xx); safe to retry"""
    pass


class TransferTimeout(TransferError):
    """The rail did not answer in time; the transfer may or may not have happened"""
    pass


class InvalidRailResponse(TransferError):
    """Exception raised when a rail answers with something that is not JSON"""
    pass


class DuplicateTransfer(TransferTimeout):
    """The rail already holds a transfer with this reference; its outcome must be reconciled"""
    pass
