import logging

from dateutil.parser import isoparse
from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils.translation import gettext_lazy as _
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import viewsets, status, filters
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response

from payfac.models import Settlement, SubMerchant
from payfac.serializers.settlement_serializer import (
    SettlementSerializer,
    SettlementDetailSerializer,
    SettlementListSerializer,
    SettlementItemSerializer,
    SettlementRejectSerializer,
)
from payfac.services.settlement_service import SettlementService
from payfac.exceptions import PayfacError
from payfac.permissions import IsOperator


logger = logging.getLogger(__name__)


def parse_date_param(value):
    """Optional YYYY-MM-DD query parameter"""
    if not value:
        return None
    return isoparse(value).date()


class SettlementViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoint for settlements

    Endpoints:
    List/Retrieve: GET /api/settlements/
    Items: GET /api/settlements/{id}/items/
    Approve: POST /api/settlements/{id}/approve/
    Reject: POST /api/settlements/{id}/reject/
    Statistics: GET /api/settlements/statistics/
    """
    filter_backends = [
        DjangoFilterBackend,
        filters.SearchFilter,
        filters.OrderingFilter
    ]
    serializer_class = SettlementSerializer
    permission_classes = [IsOperator]
    filterset_fields = ['status', 'sub_merchant', 'settlement_date']
    search_fields = ['reference', 'sub_merchant__merchant_code', 'sub_merchant__business_name']
    ordering_fields = ['settlement_date', 'created_at', 'net_amount']

    def get_queryset(self):
        queryset = Settlement.objects.with_full_details().order_by('-settlement_date', '-created_at')

        start_date = self.request.query_params.get('start_date')
        end_date = self.request.query_params.get('end_date')

        if start_date or end_date:
            try:
                queryset = queryset.in_date_range(parse_date_param(start_date), parse_date_param(end_date))
            except ValueError:
                raise ValidationError({"detail": _("Dates must be YYYY-MM-DD")})

        return queryset

    def get_serializer_class(self):
        action_serializers = {
            'list': SettlementListSerializer,
            'retrieve': SettlementDetailSerializer,
            'reject': SettlementRejectSerializer,
        }
        return action_serializers.get(self.action, self.serializer_class)

    @action(detail=True, methods=['get'])
    def items(self, request, pk=None):
        """
        Line items of a settlement

        GET /api/settlements/{id}/items/
        """
        settlement = self.get_object()
        serializer = SettlementItemSerializer(settlement.items.all(), many=True)
        return Response(serializer.data)

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        """
        Approve a calculated settlement and create its payout

        POST /api/settlements/{id}/approve/
        """
        settlement = self.get_object()

        try:
            settlement = SettlementService().approve_settlement(settlement, approved_by=request.user)
        except PayfacError as e:
            logger.warning(f"Could not approve settlement {settlement.reference}: {str(e)}")
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response({
            'status': 'success',
            'message': _('Settlement approved'),
            'settlement': SettlementSerializer(settlement).data
        })

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        """
        Put a settlement on hold

        POST /api/settlements/{id}/reject/

        Body:
        {
            "reason": "Suspicious refund pattern"
        }
        """
        settlement = self.get_object()
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            settlement = SettlementService().reject_settlement(
                settlement,
                rejected_by=request.user,
                reason=serializer.validated_data['reason']
            )
        except PayfacError as e:
            logger.warning(f"Could not reject settlement {settlement.reference}: {str(e)}")
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response({
            'status': 'success',
            'message': _('Settlement put on hold'),
            'settlement': SettlementSerializer(settlement).data
        })

    @action(detail=False, methods=['get'])
    def statistics(self, request):
        """
        Settlement statistics

        GET /api/settlements/statistics/?sub_merchant=<id>&start_date=YYYY-MM-DD&end_date=YYYY-MM-DD
        """
        sub_merchant = None
        sub_merchant_id = request.query_params.get('sub_merchant')
        if sub_merchant_id:
            try:
                sub_merchant = SubMerchant.objects.filter(pk=sub_merchant_id).first()
            except (ValueError, DjangoValidationError):
                sub_merchant = None
            if sub_merchant is None:
                return Response({"detail": _("Sub-merchant not found")}, status=status.HTTP_404_NOT_FOUND)

        try:
            start_date = parse_date_param(request.query_params.get('start_date'))
            end_date = parse_date_param(request.query_params.get('end_date'))
        except ValueError:
            return Response({"detail": _("Dates must be YYYY-MM-DD")}, status=status.HTTP_400_BAD_REQUEST)

        stats = SettlementService().get_settlement_stats(sub_merchant, start_date, end_date)
        return Response(stats)
