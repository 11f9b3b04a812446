"""
Payout serializers for the operator API and the confirmation webhook
"""
from decimal import Decimal

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers
from django.utils.translation import gettext_lazy as _

from payfac.models import Payout, PayoutBatch, SubMerchant, DESTINATION_FIELDS
from payfac.constants import PAYOUT_METHODS, CONFIRMATION_STATUSES
from payfac.serializers.settlement_serializer import money_value


class PayoutSerializer(serializers.ModelSerializer):
    """
    Standard serializer for the Payout model
    """

    sub_merchant_id = serializers.CharField(source='sub_merchant.id', read_only=True)
    merchant_code = serializers.CharField(source='sub_merchant.merchant_code', read_only=True)
    settlement_reference = serializers.CharField(source='settlement.reference', read_only=True, allow_null=True)
    batch_reference = serializers.CharField(source='batch.reference', read_only=True, allow_null=True)

    # Money field decomposition
    amount_value = money_value('amount')
    fee_value = money_value('fee')
    net_amount_value = money_value('net_amount')
    currency = serializers.CharField(source='amount.currency.code', read_only=True)

    status_display = serializers.CharField(source='get_status_display', read_only=True)
    method_display = serializers.CharField(source='get_method_display', read_only=True)
    can_retry = serializers.BooleanField(read_only=True)

    class Meta:
        model = Payout
        fields = [
            'id',
            'reference',
            'sub_merchant_id',
            'merchant_code',
            'settlement_reference',
            'batch_reference',

            # Amounts
            'currency',
            'amount_value',
            'fee_value',
            'net_amount_value',

            # Method and destination
            'method',
            'method_display',
            *DESTINATION_FIELDS,

            # Status
            'status',
            'status_display',
            'scheduled_date',
            'requires_approval',
            'processor_reference',
            'processor_status',
            'retry_count',
            'max_retries',
            'can_retry',
            'failure_code',
            'failure_message',
            'notes',

            # Timestamps
            'approved_at',
            'initiated_at',
            'completed_at',
            'cancelled_at',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class PayoutCreateSerializer(serializers.Serializer):
    """
    Serializer for an ad hoc payout

    The destination defaults to the sub-merchant's configured destination.
    """

    sub_merchant_id = serializers.CharField(required=True)
    amount = serializers.DecimalField(
        required=True,
        decimal_places=2,
        max_digits=19,
        min_value=Decimal('0.01'),
        help_text=_('Gross payout amount')
    )
    method = serializers.ChoiceField(choices=PAYOUT_METHODS, required=False)
    destination = serializers.DictField(
        child=serializers.CharField(allow_blank=True),
        required=False,
        help_text=_('Destination fields, defaults to the sub-merchant destination')
    )
    fee = serializers.DecimalField(
        required=False,
        decimal_places=2,
        max_digits=19,
        min_value=Decimal('0'),
        help_text=_('Fee override, defaults to the fee schedule')
    )
    scheduled_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_sub_merchant_id(self, value):
        try:
            sub_merchant = SubMerchant.objects.get(id=value)
        except (SubMerchant.DoesNotExist, ValueError, DjangoValidationError):
            raise serializers.ValidationError(_("Sub-merchant not found"))
        if not sub_merchant.is_active:
            raise serializers.ValidationError(_("Sub-merchant is not active"))
        return value

    def validate_destination(self, value):
        unknown = set(value) - set(DESTINATION_FIELDS)
        if unknown:
            raise serializers.ValidationError(
                _("Unknown destination fields: %(fields)s") % {'fields': ', '.join(sorted(unknown))}
            )
        return value


class PayoutCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class PayoutBatchSerializer(serializers.ModelSerializer):
    """Read-only serializer for bank transfer batches"""

    total_amount_value = money_value('total_amount')
    total_fees_value = money_value('total_fees')
    currency = serializers.CharField(source='total_amount.currency.code', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    payout_references = serializers.SerializerMethodField()

    class Meta:
        model = PayoutBatch
        fields = [
            'id',
            'reference',
            'method',
            'scheduled_date',
            'currency',
            'total_amount_value',
            'total_fees_value',
            'payout_count',
            'successful_count',
            'failed_count',
            'status',
            'status_display',
            'processed_at',
            'failure_message',
            'payout_references',
            'created_at',
        ]
        read_only_fields = fields

    def get_payout_references(self, obj):
        return [payout.reference for payout in obj.payouts.all()]


class PayoutConfirmationSerializer(serializers.Serializer):
    """
    Body of a transfer confirmation pushed by a rail

    {
        "processor_reference": "TRX-123",
        "status": "completed" | "failed" | "returned",
        "details": {...}
    }
    """

    processor_reference = serializers.CharField(required=True, max_length=100)
    status = serializers.ChoiceField(choices=CONFIRMATION_STATUSES, required=True)
    details = serializers.DictField(required=False, default=dict)
