"""
Settlement serializers for the operator API
"""
from rest_framework import serializers
from django.utils.translation import gettext_lazy as _

from payfac.models import Settlement, SettlementItem


def money_value(source):
    """Read-only decimal for the amount part of a Money field"""
    return serializers.DecimalField(
        source=f'{source}.amount',
        decimal_places=2,
        max_digits=19,
        read_only=True
    )


class SettlementItemSerializer(serializers.ModelSerializer):
    """Read-only serializer for settlement line items"""

    item_type_display = serializers.CharField(source='get_item_type_display', read_only=True)
    gross_amount_value = money_value('gross_amount')
    fee_amount_value = money_value('fee_amount')
    net_amount_value = money_value('net_amount')

    class Meta:
        model = SettlementItem
        fields = [
            'id',
            'item_type',
            'item_type_display',
            'ledger_id',
            'reference',
            'description',
            'gross_amount_value',
            'fee_amount_value',
            'net_amount_value',
            'created_at',
        ]
        read_only_fields = fields


class SettlementListSerializer(serializers.ModelSerializer):
    """
    Lightweight serializer for settlement lists
    """

    merchant_code = serializers.CharField(source='sub_merchant.merchant_code', read_only=True)
    net_amount_value = money_value('net_amount')
    currency = serializers.CharField(source='net_amount.currency.code', read_only=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = Settlement
        fields = [
            'id',
            'reference',
            'merchant_code',
            'settlement_date',
            'net_amount_value',
            'currency',
            'transaction_count',
            'status',
            'status_display',
            'created_at',
        ]
        read_only_fields = fields


class SettlementSerializer(serializers.ModelSerializer):
    """
    Full representation of a settlement with every amount broken out
    """

    sub_merchant_id = serializers.CharField(source='sub_merchant.id', read_only=True)
    merchant_code = serializers.CharField(source='sub_merchant.merchant_code', read_only=True)
    business_name = serializers.CharField(source='sub_merchant.business_name', read_only=True)
    payout_reference = serializers.CharField(source='payout.reference', read_only=True, allow_null=True)
    payout_status = serializers.CharField(source='payout.status', read_only=True, allow_null=True)
    status_display = serializers.CharField(source='get_status_display', read_only=True)
    currency = serializers.CharField(source='net_amount.currency.code', read_only=True)

    # Money field decomposition
    gross_sales_value = money_value('gross_sales')
    gross_refunds_value = money_value('gross_refunds')
    gross_disputes_value = money_value('gross_disputes')
    gross_amount_value = money_value('gross_amount')
    processor_fees_value = money_value('processor_fees')
    platform_fees_value = money_value('platform_fees')
    refund_fees_value = money_value('refund_fees')
    dispute_fees_value = money_value('dispute_fees')
    total_fees_value = money_value('total_fees')
    reserve_held_value = money_value('reserve_held')
    reserve_released_value = money_value('reserve_released')
    net_amount_value = money_value('net_amount')

    class Meta:
        model = Settlement
        fields = [
            'id',
            'reference',
            'sub_merchant_id',
            'merchant_code',
            'business_name',

            # Period
            'settlement_date',
            'period_start',
            'period_end',

            # Amounts
            'currency',
            'gross_sales_value',
            'gross_refunds_value',
            'gross_disputes_value',
            'gross_amount_value',
            'processor_fees_value',
            'platform_fees_value',
            'refund_fees_value',
            'dispute_fees_value',
            'total_fees_value',
            'reserve_held_value',
            'reserve_released_value',
            'net_amount_value',

            # Counts
            'transaction_count',
            'refund_count',
            'dispute_count',

            # Status
            'status',
            'status_display',
            'payout_reference',
            'payout_status',
            'adjustment_notes',

            # Timestamps
            'calculated_at',
            'approved_at',
            'rejected_at',
            'paid_at',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class SettlementDetailSerializer(SettlementSerializer):
    """Settlement with its line items"""

    items = SettlementItemSerializer(many=True, read_only=True)

    class Meta(SettlementSerializer.Meta):
        fields = SettlementSerializer.Meta.fields + ['items']
        read_only_fields = fields


class SettlementRejectSerializer(serializers.Serializer):
    """Serializer for putting a settlement on hold"""

    reason = serializers.CharField(
        required=True,
        max_length=500,
        help_text=_('Why the settlement is put on hold')
    )

    def validate_reason(self, value):
        if not value.strip():
            raise serializers.ValidationError(_("Reason cannot be empty"))
        return value.strip()
