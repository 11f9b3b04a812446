from django.urls import path, include
from rest_framework.routers import DefaultRouter

from payfac.apis.settlement_api import SettlementViewSet
from payfac.apis.payout_api import PayoutViewSet, PayoutBatchViewSet
from payfac.apis.webhook_api import payout_confirmation_webhook

# Create a router and register viewsets
router = DefaultRouter()
router.register(r'settlements', SettlementViewSet, basename='settlement')
router.register(r'payouts', PayoutViewSet, basename='payout')
router.register(r'payout-batches', PayoutBatchViewSet, basename='payout-batch')

urlpatterns = [
    # API routes
    path('api/', include(router.urls)),

    # Transfer confirmations
    path('webhooks/payouts/', payout_confirmation_webhook, name='payout-confirmation-webhook'),
]
