"""
Transfer confirmation webhook

Rails push the final outcome of a payout here. Signature verification is the
job of whatever sits in front of this endpoint; the endpoint itself only
checks the shared callback token.
"""
import logging

from django.utils.translation import gettext_lazy as _
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, authentication_classes
from rest_framework.response import Response

from payfac.serializers.payout_serializer import PayoutConfirmationSerializer
from payfac.services.reconciliation_service import ReconciliationService
from payfac.exceptions import PayfacError
from payfac.permissions import HasPayoutCallbackToken


logger = logging.getLogger(__name__)


@csrf_exempt
@api_view(['POST'])
@authentication_classes([])
@permission_classes([HasPayoutCallbackToken])
def payout_confirmation_webhook(request):
    """
    Apply a transfer confirmation

    Request Headers:
        X-Payfac-Callback-Token: Shared callback token

    Request Body:
    {
        "processor_reference": "TRX-123",
        "status": "completed" | "failed" | "returned",
        "details": {...}
    }

    Response:
        200 OK: Confirmation applied (or ignored as a duplicate)
        400 Bad Request: Invalid payload
        403 Forbidden: Missing or wrong callback token
        404 Not Found: No payout matches the reference
    """
    serializer = PayoutConfirmationSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    try:
        payout = ReconciliationService().confirm_payout_completion(
            data['processor_reference'],
            data['status'],
            data.get('details')
        )
    except PayfacError as e:
        logger.error(f"Error applying confirmation for {data['processor_reference']}: {str(e)}", exc_info=True)
        return Response({"status": "error", "message": str(e)}, status=status.HTTP_400_BAD_REQUEST)

    if payout is None:
        return Response(
            {"status": "error", "message": _("No payout matches this reference")},
            status=status.HTTP_404_NOT_FOUND
        )

    return Response(
        {
            "status": "success",
            "payout_reference": payout.reference,
            "payout_status": payout.status,
        },
        status=status.HTTP_200_OK
    )
