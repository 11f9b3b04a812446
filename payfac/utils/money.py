from decimal import Decimal, ROUND_HALF_UP

from djmoney.money import Money

from payfac.settings import get_payfac_setting

TWO_PLACES = Decimal('0.01')


def to_decimal(value):
    """Return value (Money, Decimal, int, float or str) as a Decimal"""
    if isinstance(value, Money):
        return value.amount
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_amount(value):
    """Round to two decimal places, halves away from zero"""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_money(value, currency=None):
    """Wrap a value as Money in the configured currency, rounded to two places"""
    return Money(quantize_amount(value), currency or get_payfac_setting('CURRENCY'))


def sum_amounts(values):
    """Exact Decimal sum of an iterable of Money or Decimal values"""
    total = Decimal('0')
    for value in values:
        total += to_decimal(value)
    return total
