import io
import csv
import datetime
import xlsxwriter
from django.http import HttpResponse
from django.utils import timezone
from djmoney.money import Money
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter, A4, landscape
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet
from payfac.settings import get_payfac_setting


def get_export_filename(prefix, extension):
    """
    Generate a filename for export with timestamp

    Args:
        prefix (str): Prefix for the filename
        extension (str): File extension

    Returns:
        str: Export filename
    """
    timestamp = timezone.now().strftime('%Y%m%d_%H%M%S')
    return f"{prefix}_{timestamp}.{extension}"


def get_column_headers(model, fields):
    """Verbose names for model fields, title-cased names for anything else"""
    model_fields = {f.name: f for f in model._meta.fields}
    headers = []
    for field in fields:
        if field in model_fields:
            headers.append(str(model_fields[field].verbose_name).title())
        else:
            headers.append(field.replace('.', ' ').replace('_', ' ').title())
    return headers


def resolve_value(obj, field):
    """Follow a dotted attribute path (e.g. 'sub_merchant.business_name')"""
    value = obj
    for attr in field.split('.'):
        if value is None:
            return None
        value = getattr(value, attr, None)
    if callable(value):
        value = value()
    return value


def format_value(value):
    """Render a value as export text"""
    if value is None:
        return ''
    if isinstance(value, Money):
        return f"{value.amount:.2f}"
    if isinstance(value, datetime.datetime):
        return timezone.localtime(value).strftime('%Y-%m-%d %H:%M:%S') if timezone.is_aware(value) \
            else value.strftime('%Y-%m-%d %H:%M:%S')
    if isinstance(value, datetime.date):
        return value.strftime('%Y-%m-%d')
    return str(value)


def export_queryset_to_csv(queryset, fields, filename_prefix='export'):
    """
    Export a queryset to CSV

    Args:
        queryset: Django queryset to export
        fields (list): Field names or dotted attribute paths to export
        filename_prefix (str): Prefix for the export filename

    Returns:
        HttpResponse: CSV response for download
    """
    response = HttpResponse(content_type='text/csv')
    response['Content-Disposition'] = f'attachment; filename="{get_export_filename(filename_prefix, "csv")}"'

    writer = csv.writer(response)
    writer.writerow(get_column_headers(queryset.model, fields))

    for obj in queryset:
        writer.writerow([format_value(resolve_value(obj, field)) for field in fields])

    return response


def export_queryset_to_excel(queryset, fields, filename_prefix='export', sheet_name='Sheet1'):
    """
    Export a queryset to Excel

    Money values are written as numbers, datetimes as Excel dates.
    """
    output = io.BytesIO()
    workbook = xlsxwriter.Workbook(output, {'remove_timezone': True})
    worksheet = workbook.add_worksheet(sheet_name)

    header_format = workbook.add_format({
        'bold': True,
        'bg_color': '#f0f0f0',
        'border': 1
    })
    money_format = workbook.add_format({'num_format': '#,##0.00'})
    date_format = workbook.add_format({'num_format': 'yyyy-mm-dd'})
    datetime_format = workbook.add_format({'num_format': 'yyyy-mm-dd hh:mm:ss'})

    for col, header in enumerate(get_column_headers(queryset.model, fields)):
        worksheet.write(0, col, header, header_format)

    for row_idx, obj in enumerate(queryset, start=1):
        for col_idx, field in enumerate(fields):
            value = resolve_value(obj, field)

            if isinstance(value, Money):
                worksheet.write_number(row_idx, col_idx, float(value.amount), money_format)
            elif isinstance(value, datetime.datetime):
                worksheet.write_datetime(row_idx, col_idx, value, datetime_format)
            elif isinstance(value, datetime.date):
                worksheet.write_datetime(row_idx, col_idx, value, date_format)
            elif isinstance(value, (int, float)) and not isinstance(value, bool):
                worksheet.write_number(row_idx, col_idx, value)
            else:
                worksheet.write_string(row_idx, col_idx, format_value(value))

    worksheet.set_column(0, max(len(fields) - 1, 0), 18)

    workbook.close()

    output.seek(0)
    response = HttpResponse(
        output.read(),
        content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    )
    response['Content-Disposition'] = f'attachment; filename="{get_export_filename(filename_prefix, "xlsx")}"'

    return response


def _pdf_page_size():
    page_size = A4 if get_payfac_setting('EXPORT_PAGESIZE') == 'A4' else letter
    if get_payfac_setting('EXPORT_ORIENTATION') == 'landscape':
        page_size = landscape(page_size)
    return page_size


def export_queryset_to_pdf(queryset, fields, filename_prefix='export', title=None):
    """
    Export a queryset to PDF

    Args:
        queryset: Django queryset to export
        fields (list): Field names or dotted attribute paths to export
        filename_prefix (str): Prefix for the export filename
        title (str): Title for the PDF document

    Returns:
        HttpResponse: PDF response for download
    """
    buffer = io.BytesIO()

    pdf = SimpleDocTemplate(
        buffer,
        pagesize=_pdf_page_size(),
        rightMargin=36,
        leftMargin=36,
        topMargin=48,
        bottomMargin=48
    )

    styles = getSampleStyleSheet()
    elements = []

    if title:
        elements.append(Paragraph(str(title), styles['Heading1']))
        elements.append(Spacer(1, 12))

    data = [get_column_headers(queryset.model, fields)]
    for obj in queryset:
        data.append([format_value(resolve_value(obj, field)) for field in fields])

    table = Table(data, repeatRows=1)
    style = TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, 0), 9),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
        ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 1), (-1, -1), 7),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
    ])

    for row in range(2, len(data), 2):
        style.add('BACKGROUND', (0, row), (-1, row), colors.whitesmoke)

    table.setStyle(style)
    elements.append(table)

    pdf.build(elements)

    response = HttpResponse(content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="{get_export_filename(filename_prefix, "pdf")}"'
    response.write(buffer.getvalue())
    buffer.close()

    return response
