import logging

from django.contrib import admin, messages
from django.urls import reverse
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _

from payfac.models import (
    SubMerchant, Transaction, Refund, Dispute, Reserve,
    Settlement, SettlementItem, Payout, PayoutBatch
)
from payfac.constants import (
    SETTLEMENT_STATUS_CALCULATED,
    SETTLEMENT_STATUS_APPROVED,
    PAYOUT_STATUS_PENDING,
    PAYOUT_STATUS_APPROVED,
)
from payfac.exceptions import PayfacError
from payfac.services.settlement_service import SettlementService
from payfac.services.payout_service import PayoutService
from payfac.services.reconciliation_service import ReconciliationService
from payfac.utils.exporters import (
    export_queryset_to_csv, export_queryset_to_excel, export_queryset_to_pdf
)

logger = logging.getLogger(__name__)


class ExportMixin:
    """Mixin to add export actions to admin"""

    actions = ['export_to_csv', 'export_to_excel', 'export_to_pdf']

    def get_export_fields(self):
        return [field.name for field in self.model._meta.fields]

    def export_to_csv(self, request, queryset):
        """Export selected items to CSV"""
        meta = self.model._meta
        return export_queryset_to_csv(
            queryset=queryset,
            fields=self.get_export_fields(),
            filename_prefix=str(meta.verbose_name_plural).lower().replace(' ', '_')
        )
    export_to_csv.short_description = _("Export selected items to CSV")

    def export_to_excel(self, request, queryset):
        """Export selected items to Excel"""
        meta = self.model._meta
        return export_queryset_to_excel(
            queryset=queryset,
            fields=self.get_export_fields(),
            filename_prefix=str(meta.verbose_name_plural).lower().replace(' ', '_'),
            sheet_name=str(meta.verbose_name_plural)[:31]
        )
    export_to_excel.short_description = _("Export selected items to Excel")

    def export_to_pdf(self, request, queryset):
        """Export selected items to PDF"""
        meta = self.model._meta
        fields = [
            name for name in self.get_export_fields()
            if not name.endswith('_response') and name not in ('id', 'updated_at')
        ]
        return export_queryset_to_pdf(
            queryset=queryset,
            fields=fields,
            filename_prefix=str(meta.verbose_name_plural).lower().replace(' ', '_'),
            title=_("{} Export").format(meta.verbose_name_plural)
        )
    export_to_pdf.short_description = _("Export selected items to PDF")


def sub_merchant_link(obj):
    url = reverse('admin:payfac_submerchant_change', args=[obj.sub_merchant_id])
    return format_html('<a href="{}">{}</a>', url, obj.sub_merchant)
sub_merchant_link.short_description = _("Sub-merchant")


def format_money(value):
    return f"{value.amount} {value.currency.code}"


class SubMerchantAdmin(ExportMixin, admin.ModelAdmin):
    """Admin for the SubMerchant model"""

    list_display = (
        'merchant_code', 'business_name', 'status', 'settlement_cycle',
        'reserve_percentage', 'payout_method', 'risk_score', 'created_at'
    )
    list_filter = ('status', 'settlement_cycle', 'payout_method')
    search_fields = ('merchant_code', 'business_name', 'email')
    fieldsets = (
        (None, {
            'fields': ('merchant_code', 'business_name', 'email', 'phone', 'status', 'risk_score')
        }),
        (_('Settlement'), {
            'fields': (
                'settlement_cycle', 'settlement_day_of_week', 'settlement_day_of_month',
                'reserve_percentage', 'reserve_days', 'minimum_payout_amount'
            )
        }),
        (_('Payout destination'), {
            'fields': (
                'payout_method', 'bank_code', 'bank_account_number', 'bank_account_name', 'iban',
                'instant_transfer_address', 'wallet_provider', 'wallet_number'
            )
        }),
    )


class LedgerAdmin(ExportMixin, admin.ModelAdmin):
    """Ledger rows are written by the processing side; the admin only reads them"""

    list_filter = ('status', 'created_at')
    search_fields = ('reference', 'sub_merchant__merchant_code')
    raw_id_fields = ('sub_merchant', 'settlement')

    def formatted_amount(self, obj):
        return format_money(obj.amount)
    formatted_amount.short_description = _("Amount")

    def settlement_link(self, obj):
        if not obj.settlement_id:
            return "-"
        url = reverse('admin:payfac_settlement_change', args=[obj.settlement_id])
        return format_html('<a href="{}">{}</a>', url, obj.settlement.reference)
    settlement_link.short_description = _("Settlement")


class TransactionAdmin(LedgerAdmin):
    list_display = (
        'reference', sub_merchant_link, 'formatted_amount', 'payment_method',
        'status', 'captured_at', 'settlement_link'
    )
    list_filter = ('status', 'payment_method', 'captured_at')


class RefundAdmin(LedgerAdmin):
    list_display = ('reference', sub_merchant_link, 'formatted_amount', 'status', 'completed_at', 'settlement_link')
    raw_id_fields = ('sub_merchant', 'settlement', 'transaction')


class DisputeAdmin(LedgerAdmin):
    list_display = (
        'reference', sub_merchant_link, 'formatted_amount', 'reason_code',
        'status', 'resolved_at', 'settlement_link'
    )
    raw_id_fields = ('sub_merchant', 'settlement', 'transaction')


class ReserveAdmin(ExportMixin, admin.ModelAdmin):
    list_display = (sub_merchant_link, 'reserve_type', 'formatted_amount', 'status', 'release_date', 'released_at')
    list_filter = ('status', 'release_date')
    search_fields = ('sub_merchant__merchant_code', 'settlement__reference')
    readonly_fields = (
        'sub_merchant', 'settlement', 'reserve_type', 'amount', 'release_date',
        'released_at', 'released_by_settlement'
    )

    def formatted_amount(self, obj):
        return format_money(obj.amount)
    formatted_amount.short_description = _("Amount")


class SettlementItemInline(admin.TabularInline):
    """Line items are immutable once written"""
    model = SettlementItem
    extra = 0
    can_delete = False
    fields = ('item_type', 'reference', 'description', 'gross_amount', 'fee_amount', 'net_amount')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class SettlementAdmin(ExportMixin, admin.ModelAdmin):
    """Admin for the Settlement model"""

    list_display = (
        'reference', sub_merchant_link, 'settlement_date', 'formatted_net_amount',
        'transaction_count', 'status', 'payout_status', 'created_at'
    )
    list_filter = ('status', 'settlement_date')
    search_fields = ('reference', 'sub_merchant__merchant_code', 'sub_merchant__business_name')
    date_hierarchy = 'settlement_date'
    inlines = [SettlementItemInline]
    readonly_fields = (
        'reference', 'sub_merchant', 'settlement_date', 'period_start', 'period_end',
        'gross_sales', 'gross_refunds', 'gross_disputes', 'gross_amount',
        'processor_fees', 'platform_fees', 'refund_fees', 'dispute_fees', 'total_fees',
        'reserve_held', 'reserve_released', 'net_amount',
        'transaction_count', 'refund_count', 'dispute_count',
        'status', 'payout', 'calculated_at', 'approved_at', 'approved_by',
        'rejected_at', 'rejected_by', 'paid_at', 'created_at', 'updated_at'
    )
    actions = ExportMixin.actions + ['approve_settlements', 'reject_settlements']
    fieldsets = (
        (None, {
            'fields': ('reference', 'sub_merchant', 'settlement_date', 'period_start', 'period_end')
        }),
        (_('Amounts'), {
            'fields': (
                'gross_sales', 'gross_refunds', 'gross_disputes', 'gross_amount',
                'processor_fees', 'platform_fees', 'refund_fees', 'dispute_fees', 'total_fees',
                'reserve_held', 'reserve_released', 'net_amount'
            )
        }),
        (_('Counts'), {
            'fields': ('transaction_count', 'refund_count', 'dispute_count')
        }),
        (_('Status'), {
            'fields': (
                'status', 'payout', 'adjustment_notes', 'calculated_at', 'approved_at',
                'approved_by', 'rejected_at', 'rejected_by', 'paid_at'
            )
        }),
        (_('Timestamps'), {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('sub_merchant', 'payout')

    def formatted_net_amount(self, obj):
        return format_money(obj.net_amount)
    formatted_net_amount.short_description = _("Net amount")

    def payout_status(self, obj):
        return obj.payout.get_status_display() if obj.payout_id else "-"
    payout_status.short_description = _("Payout")

    def approve_settlements(self, request, queryset):
        """Approve selected calculated settlements"""
        settlement_service = SettlementService()
        approved = 0

        for settlement in queryset.filter(status=SETTLEMENT_STATUS_CALCULATED):
            try:
                settlement_service.approve_settlement(settlement, approved_by=request.user)
                approved += 1
            except PayfacError as e:
                messages.error(request, _("Error approving settlement {}: {}").format(settlement.reference, str(e)))

        if approved:
            messages.success(request, _("Approved {} settlements").format(approved))
        else:
            messages.info(request, _("No settlements were approved"))
    approve_settlements.short_description = _("Approve selected settlements")

    def reject_settlements(self, request, queryset):
        """Put selected settlements on hold"""
        settlement_service = SettlementService()
        rejected = 0

        for settlement in queryset.filter(status__in=[SETTLEMENT_STATUS_CALCULATED, SETTLEMENT_STATUS_APPROVED]):
            try:
                settlement_service.reject_settlement(
                    settlement,
                    rejected_by=request.user,
                    reason=_("Rejected from admin by {}").format(request.user)
                )
                rejected += 1
            except PayfacError as e:
                messages.error(request, _("Error rejecting settlement {}: {}").format(settlement.reference, str(e)))

        if rejected:
            messages.success(request, _("Put {} settlements on hold").format(rejected))
        else:
            messages.info(request, _("No settlements were put on hold"))
    reject_settlements.short_description = _("Put selected settlements on hold")


class PayoutAdmin(ExportMixin, admin.ModelAdmin):
    """Admin for the Payout model"""

    list_display = (
        'reference', sub_merchant_link, 'formatted_amount', 'formatted_fee', 'method',
        'status', 'scheduled_date', 'retry_count', 'processor_reference'
    )
    list_filter = ('status', 'method', 'scheduled_date', 'requires_approval')
    search_fields = ('reference', 'processor_reference', 'sub_merchant__merchant_code')
    date_hierarchy = 'scheduled_date'
    readonly_fields = (
        'reference', 'sub_merchant', 'settlement', 'amount', 'fee', 'net_amount', 'method',
        'bank_code', 'bank_account_number', 'bank_account_name', 'iban',
        'instant_transfer_address', 'wallet_provider', 'wallet_number',
        'status', 'batch', 'processor_reference', 'processor_status', 'processor_response',
        'retry_count', 'max_retries', 'failure_code', 'failure_message', 'requires_approval',
        'approved_by', 'approved_at', 'initiated_at', 'completed_at', 'cancelled_at',
        'created_at', 'updated_at'
    )
    actions = ExportMixin.actions + ['approve_payouts', 'cancel_payouts', 'process_payouts', 'retry_payouts']
    fieldsets = (
        (None, {
            'fields': ('reference', 'sub_merchant', 'settlement', 'amount', 'fee', 'net_amount', 'scheduled_date')
        }),
        (_('Destination'), {
            'fields': (
                'method', 'bank_code', 'bank_account_number', 'bank_account_name', 'iban',
                'instant_transfer_address', 'wallet_provider', 'wallet_number'
            )
        }),
        (_('Status'), {
            'fields': (
                'status', 'requires_approval', 'approved_by', 'approved_at',
                'retry_count', 'max_retries', 'failure_code', 'failure_message', 'notes'
            )
        }),
        (_('Processor'), {
            'fields': ('batch', 'processor_reference', 'processor_status', 'processor_response')
        }),
        (_('Timestamps'), {
            'fields': ('initiated_at', 'completed_at', 'cancelled_at', 'created_at', 'updated_at')
        }),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('sub_merchant', 'settlement', 'batch')

    def formatted_amount(self, obj):
        return format_money(obj.amount)
    formatted_amount.short_description = _("Amount")

    def formatted_fee(self, obj):
        return format_money(obj.fee)
    formatted_fee.short_description = _("Fee")

    def approve_payouts(self, request, queryset):
        """Approve selected payouts waiting for approval"""
        payout_service = PayoutService()
        approved = 0

        for payout in queryset.filter(status=PAYOUT_STATUS_PENDING):
            try:
                payout_service.approve_payout(payout, approved_by=request.user)
                approved += 1
            except PayfacError as e:
                messages.error(request, _("Error approving payout {}: {}").format(payout.reference, str(e)))

        messages.success(request, _("Approved {} payouts").format(approved))
    approve_payouts.short_description = _("Approve selected payouts")

    def cancel_payouts(self, request, queryset):
        """Cancel selected payouts waiting for approval"""
        payout_service = PayoutService()
        cancelled = 0

        for payout in queryset.filter(status=PAYOUT_STATUS_PENDING):
            try:
                payout_service.cancel_payout(payout, reason=_("Cancelled from admin by {}").format(request.user))
                cancelled += 1
            except PayfacError as e:
                messages.error(request, _("Error cancelling payout {}: {}").format(payout.reference, str(e)))

        messages.success(request, _("Cancelled {} payouts").format(cancelled))
    cancel_payouts.short_description = _("Cancel selected payouts")

    def process_payouts(self, request, queryset):
        """Send selected approved payouts now"""
        payout_service = PayoutService()
        processed = 0

        for payout in queryset.filter(status=PAYOUT_STATUS_APPROVED):
            try:
                payout = payout_service.process_single_payout(payout)
                processed += 1
                messages.info(request, _("Payout {} is now {}").format(payout.reference, payout.get_status_display()))
            except PayfacError as e:
                messages.error(request, _("Error processing payout {}: {}").format(payout.reference, str(e)))

        if not processed:
            messages.info(request, _("No approved payouts were selected"))
    process_payouts.short_description = _("Send selected payouts now")

    def retry_payouts(self, request, queryset):
        """Retry selected failed payouts that still have retries left"""
        reconciliation_service = ReconciliationService()
        retried = 0

        for payout in queryset.filter(pk__in=Payout.objects.retryable().values('pk')):
            try:
                payout = reconciliation_service.retry_payout(payout)
                retried += 1
            except PayfacError as e:
                messages.error(request, _("Error retrying payout {}: {}").format(payout.reference, str(e)))

        if retried:
            messages.success(request, _("Retried {} payouts").format(retried))
        else:
            messages.info(request, _("No retryable payouts were selected"))
    retry_payouts.short_description = _("Retry selected failed payouts")


class PayoutBatchAdmin(ExportMixin, admin.ModelAdmin):
    list_display = (
        'reference', 'scheduled_date', 'payout_count', 'successful_count',
        'failed_count', 'status', 'processed_at'
    )
    list_filter = ('status', 'scheduled_date')
    search_fields = ('reference',)
    readonly_fields = (
        'reference', 'method', 'scheduled_date', 'total_amount', 'total_fees', 'payout_count',
        'successful_count', 'failed_count', 'status', 'processed_at', 'processor_response',
        'failure_message', 'created_at', 'updated_at'
    )


admin.site.register(SubMerchant, SubMerchantAdmin)
admin.site.register(Transaction, TransactionAdmin)
admin.site.register(Refund, RefundAdmin)
admin.site.register(Dispute, DisputeAdmin)
admin.site.register(Reserve, ReserveAdmin)
admin.site.register(Settlement, SettlementAdmin)
admin.site.register(Payout, PayoutAdmin)
admin.site.register(PayoutBatch, PayoutBatchAdmin)
