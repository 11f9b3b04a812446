import logging

from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import viewsets, status, filters
from rest_framework.decorators import action
from rest_framework.response import Response

from payfac.models import Payout, PayoutBatch, SubMerchant
from payfac.serializers.payout_serializer import (
    PayoutSerializer,
    PayoutCreateSerializer,
    PayoutCancelSerializer,
    PayoutBatchSerializer,
)
from payfac.services.payout_service import PayoutService
from payfac.exceptions import PayfacError
from payfac.permissions import IsOperator


logger = logging.getLogger(__name__)


class PayoutViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoint for payouts

    Endpoints:
    List/Retrieve: GET /api/payouts/
    Create: POST /api/payouts/create_payout/
    Approve: POST /api/payouts/{id}/approve/
    Cancel: POST /api/payouts/{id}/cancel/
    Process: POST /api/payouts/{id}/process/
    Summary: GET /api/payouts/summary/
    """
    filter_backends = [
        DjangoFilterBackend,
        filters.SearchFilter,
        filters.OrderingFilter
    ]
    serializer_class = PayoutSerializer
    permission_classes = [IsOperator]
    filterset_fields = ['status', 'method', 'sub_merchant', 'settlement', 'batch', 'scheduled_date']
    search_fields = ['reference', 'processor_reference', 'sub_merchant__merchant_code']
    ordering_fields = ['scheduled_date', 'created_at', 'amount']

    def get_queryset(self):
        return Payout.objects.select_related('sub_merchant', 'settlement', 'batch').order_by('-created_at')

    def get_serializer_class(self):
        action_serializers = {
            'create_payout': PayoutCreateSerializer,
            'cancel': PayoutCancelSerializer,
        }
        return action_serializers.get(self.action, self.serializer_class)

    @action(detail=False, methods=['post'])
    def create_payout(self, request):
        """
        Create an ad hoc payout

        POST /api/payouts/create_payout/

        Body:
        {
            "sub_merchant_id": "uuid",
            "amount": "1000.00",
            "method": "instant_transfer" (optional, defaults to the sub-merchant's),
            "destination": {...} (optional),
            "fee": "5.00" (optional),
            "scheduled_date": "2024-03-15" (optional),
            "notes": "..." (optional)
        }
        """
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        sub_merchant = get_object_or_404(SubMerchant, id=data['sub_merchant_id'])

        try:
            payout = PayoutService().create_payout(
                sub_merchant=sub_merchant,
                amount=data['amount'],
                method=data.get('method') or sub_merchant.payout_method,
                destination=data.get('destination'),
                fee=data.get('fee'),
                scheduled_date=data.get('scheduled_date'),
                notes=data.get('notes', '')
            )
        except PayfacError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        logger.info(f"Payout {payout.reference} created by {request.user}")
        return Response(PayoutSerializer(payout).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        """
        Approve a payout waiting for approval

        POST /api/payouts/{id}/approve/
        """
        payout = self.get_object()

        try:
            payout = PayoutService().approve_payout(payout, approved_by=request.user)
        except PayfacError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(PayoutSerializer(payout).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """
        Cancel a payout waiting for approval

        POST /api/payouts/{id}/cancel/
        """
        payout = self.get_object()
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            payout = PayoutService().cancel_payout(payout, reason=serializer.validated_data.get('reason', ''))
        except PayfacError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(PayoutSerializer(payout).data)

    @action(detail=True, methods=['post'])
    def process(self, request, pk=None):
        """
        Send an approved payout now instead of waiting for the scheduled run

        POST /api/payouts/{id}/process/
        """
        payout = self.get_object()

        try:
            payout = PayoutService().process_single_payout(payout)
        except PayfacError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(PayoutSerializer(payout).data)

    @action(detail=False, methods=['get'])
    def summary(self, request):
        """
        Payouts waiting on an operator or on the next run

        GET /api/payouts/summary/
        """
        return Response(PayoutService().get_pending_payout_summary())


class PayoutBatchViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoint for bank transfer batches

    List/Retrieve: GET /api/payout-batches/
    """
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    serializer_class = PayoutBatchSerializer
    permission_classes = [IsOperator]
    filterset_fields = ['status', 'scheduled_date']
    ordering_fields = ['scheduled_date', 'created_at']

    def get_queryset(self):
        return PayoutBatch.objects.prefetch_related('payouts').order_by('-created_at')
