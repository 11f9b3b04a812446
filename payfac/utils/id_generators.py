import random
import string

from django.utils import timezone


def generate_random_string(length=6, include_digits=True, include_uppercase=True):
    """
    Generate a random string from uppercase letters and/or digits

    Args:
        length (int): Length of the random string to generate
        include_digits (bool): Include digits in the random string
        include_uppercase (bool): Include uppercase letters in the random string

    Returns:
        str: Random string
    """
    chars = ''

    if include_digits:
        chars += string.digits
    if include_uppercase:
        chars += string.ascii_uppercase

    if not chars:
        chars = string.ascii_uppercase + string.digits

    return ''.join(random.choice(chars) for _ in range(length))


def _dated_reference(prefix, on_date=None, length=6):
    on_date = on_date or timezone.localdate()
    return f"{prefix}-{on_date.strftime('%Y%m%d')}-{generate_random_string(length)}"


def generate_settlement_reference(on_date=None, prefix='STL'):
    """
    Generate a settlement reference such as STL-20240115-8K2JQX

    Args:
        on_date (date): Date embedded in the reference (defaults to today)
        prefix (str): Prefix for the reference

    Returns:
        str: Settlement reference
    """
    return _dated_reference(prefix, on_date)


def generate_payout_reference(on_date=None, prefix='PO'):
    """
    Generate a payout reference such as PO-20240115-Q7M1ZA

    Args:
        on_date (date): Date embedded in the reference (defaults to today)
        prefix (str): Prefix for the reference

    Returns:
        str: Payout reference
    """
    return _dated_reference(prefix, on_date)


def generate_batch_reference(on_date=None, prefix='BAT'):
    """Generate a payout batch reference such as BAT-20240115-4XK9"""
    return _dated_reference(prefix, on_date, length=4)
