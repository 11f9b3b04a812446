from payfac.utils.id_generators import (
    generate_random_string, generate_settlement_reference,
    generate_payout_reference, generate_batch_reference
)
from payfac.utils.money import quantize_amount, to_decimal, to_money, sum_amounts
from payfac.utils.exporters import (
    get_export_filename, export_queryset_to_csv,
    export_queryset_to_excel, export_queryset_to_pdf
)


__all__ = [
    'generate_random_string',
    'generate_settlement_reference',
    'generate_payout_reference',
    'generate_batch_reference',
    'quantize_amount',
    'to_decimal',
    'to_money',
    'sum_amounts',
    'get_export_filename',
    'export_queryset_to_csv',
    'export_queryset_to_excel',
    'export_queryset_to_pdf',
]
