"""
API views for the captive portal access core
"""

import json
import logging

from django.core.exceptions import ValidationError
from django.http import HttpResponse
from django.views.decorators.csrf import csrf_exempt
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .authorizer import authorize
from .control import (
    current_session_for_device,
    disconnect,
    list_active_sessions,
)
from .entitlements import (
    activate_from_payment,
    record_checkout_reference,
    redeem_reconnection_code,
    redeem_voucher,
    start_purchase,
)
from .exceptions import PaymentNotFound
from .models import AccessPackage, Payment, PaymentCallback
from .permissions import IsAdminOrHasAdminKey, get_admin_key, is_staff_request
from .serializers import (
    AccessPackageSerializer,
    AuthorizeSerializer,
    CheckoutReferenceSerializer,
    DisconnectSerializer,
    GenerateVouchersSerializer,
    PaymentSerializer,
    PaymentStatusSerializer,
    PurchaseSerializer,
    ReconnectSerializer,
    SessionSerializer,
    VoucherRedeemSerializer,
    VoucherSerializer,
)
from .tasks import sweep_expired_sessions
from .utils import get_client_ip
from .vouchers import generate_vouchers, vouchers_to_csv

logger = logging.getLogger(__name__)


def _authorization_data(authorization):
    if authorization is None:
        return None
    return {
        "authorized": authorization["authorized"],
        "reason": authorization["reason"],
        "remaining_seconds": authorization["remaining_seconds"],
    }


def _parse_stk_callback(payload):
    """
    Pull (checkout_ref, result_code, result_description, receipt_ref) out of
    an STK callback body. Raises ValueError when the payload has the wrong shape.
    """
    body = payload.get("Body") if isinstance(payload, dict) else None
    if not isinstance(body, dict):
        raise ValueError("Missing callback Body")
    stk = body.get("stkCallback")
    if not isinstance(stk, dict):
        raise ValueError("Malformed stkCallback")

    checkout_ref = stk.get("CheckoutRequestID") or ""
    result_code = stk.get("ResultCode")
    if not checkout_ref or result_code is None:
        raise ValueError("Missing CheckoutRequestID or ResultCode")

    receipt_ref = None
    metadata = stk.get("CallbackMetadata")
    if metadata is not None:
        items = metadata.get("Item") if isinstance(metadata, dict) else None
        if not isinstance(items, list):
            raise ValueError("Malformed CallbackMetadata")
        for item in items:
            if not isinstance(item, dict):
                raise ValueError("Malformed CallbackMetadata item")
            if item.get("Name") == "MpesaReceiptNumber":
                receipt_ref = str(item.get("Value") or "")

    return checkout_ref, result_code, stk.get("ResultDesc") or "", receipt_ref


# =============================================================================
# PUBLIC PORTAL ENDPOINTS
# =============================================================================


@api_view(["GET"])
@permission_classes([AllowAny])
def list_packages(request):
    """
    Get all active access packages
    """
    packages = AccessPackage.objects.filter(is_active=True)
    return Response(
        {"success": True, "packages": AccessPackageSerializer(packages, many=True).data}
    )


@api_view(["POST"])
@permission_classes([AllowAny])
def purchase(request):
    """
    Start a package purchase: creates the pending session and payment the
    push-payment callback will later complete
    """
    serializer = PurchaseSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = start_purchase(
        package_id=serializer.validated_data["package_id"],
        device_id=serializer.validated_data["mac_address"],
        phone_number=serializer.validated_data["phone_number"],
    )

    return Response(
        {
            "success": True,
            "message": "Purchase started. Confirm the payment prompt on your phone.",
            "session": SessionSerializer(result["session"]).data,
            "payment": PaymentSerializer(result["payment"]).data,
        },
        status=status.HTTP_201_CREATED,
    )


@api_view(["GET"])
@permission_classes([AllowAny])
def payment_status(request, payment_id):
    """
    Poll a payment; once completed the response carries the session and the
    reconnection code
    """
    try:
        payment = Payment.objects.select_related("session", "session__package").get(
            pk=payment_id
        )
    except (Payment.DoesNotExist, ValidationError, ValueError):
        raise PaymentNotFound()

    return Response(
        {
            "success": True,
            "payment": PaymentStatusSerializer(payment).data,
            "session": SessionSerializer(payment.session).data,
        }
    )


@api_view(["POST"])
@permission_classes([IsAdminOrHasAdminKey])
def payment_checkout_reference(request, payment_id):
    """
    Record the checkout reference returned by the push-payment initiation
    """
    serializer = CheckoutReferenceSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    payment = record_checkout_reference(
        payment_id, serializer.validated_data["checkout_request_id"]
    )

    return Response({"success": True, "payment": PaymentSerializer(payment).data})


@csrf_exempt
@api_view(["POST"])
@permission_classes([AllowAny])
def payment_callback(request):
    """
    M-Pesa STK push callback

    Expected payload:
        {"Body": {"stkCallback": {
            "CheckoutRequestID": "...",
            "ResultCode": 0,
            "ResultDesc": "...",
            "CallbackMetadata": {"Item": [{"Name": "MpesaReceiptNumber", "Value": "..."}]}
        }}}

    The callback log row is written for every request, processed or not.
    """
    payload = request.data
    logger.info(f"Payment callback received: {json.dumps(payload, default=str)}")

    callback_log = PaymentCallback.objects.create(
        raw_payload=payload if isinstance(payload, (dict, list)) else {},
        source_ip=get_client_ip(request),
    )

    try:
        checkout_ref, result_code, result_description, receipt_ref = (
            _parse_stk_callback(payload)
        )
    except ValueError as e:
        error_msg = str(e)
        logger.error(f"Payment callback rejected: {error_msg}")
        callback_log.mark_failed(error_msg)
        return Response(
            {"success": False, "error": error_msg, "code": "invalid_request"},
            status=status.HTTP_400_BAD_REQUEST,
        )

    try:
        logged_code = int(result_code)
    except (TypeError, ValueError):
        logged_code = None

    callback_log.checkout_request_id = str(checkout_ref)[:100]
    callback_log.result_code = logged_code
    callback_log.result_description = str(result_description)[:255]
    callback_log.save(
        update_fields=["checkout_request_id", "result_code", "result_description"]
    )

    try:
        result = activate_from_payment(
            checkout_ref,
            result_code,
            receipt_ref=receipt_ref,
            result_description=result_description,
        )
    except PaymentNotFound:
        callback_log.mark_ignored(f"Unknown checkout reference {checkout_ref}")
        raise
    except Exception as e:
        callback_log.mark_failed(str(e))
        raise

    if result["changed"]:
        callback_log.mark_processed(payment=result["payment"])
    else:
        callback_log.mark_ignored(
            f"Payment already {result['payment'].status}", payment=result["payment"]
        )

    return Response(
        {
            "success": True,
            "message": "Callback processed" if result["changed"] else "Duplicate callback ignored",
            "payment_status": result["payment"].status,
            "session_status": result["session"].status,
            "authorization": _authorization_data(result["authorization"]),
        }
    )


@api_view(["POST"])
@permission_classes([AllowAny])
def voucher_redeem(request):
    """
    Redeem a prepaid voucher for the requesting device
    """
    serializer = VoucherRedeemSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = redeem_voucher(
        serializer.validated_data["voucher_code"],
        serializer.validated_data["mac_address"],
        phone_number=serializer.validated_data.get("phone_number", ""),
    )

    return Response(
        {
            "success": True,
            "message": f"Voucher redeemed. Access granted for {result['package'].duration_minutes} minutes.",
            "session": SessionSerializer(result["session"]).data,
            "authorization": _authorization_data(result["authorization"]),
        }
    )


@api_view(["POST"])
@permission_classes([AllowAny])
def reconnect(request):
    """
    Redeem a reconnection code issued with a completed payment
    """
    serializer = ReconnectSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = redeem_reconnection_code(
        serializer.validated_data["reconnection_code"],
        serializer.validated_data["mac_address"],
    )

    return Response(
        {
            "success": True,
            "message": "Reconnected.",
            "session": SessionSerializer(result["session"]).data,
            "authorization": _authorization_data(result["authorization"]),
        }
    )


@api_view(["POST"])
@permission_classes([AllowAny])
def session_authorize(request, session_id):
    """
    Ask whether the session grants access right now. A denial is a normal
    response (authorized: false with a reason), not an error.
    """
    serializer = AuthorizeSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    result = authorize(session_id, serializer.validated_data.get("mac_address") or None)
    session = result["session"]

    return Response(
        {
            "success": True,
            "authorized": result["authorized"],
            "reason": result["reason"],
            "remaining_seconds": result["remaining_seconds"],
            "session": SessionSerializer(session).data if session else None,
        }
    )


@api_view(["POST"])
@permission_classes([AllowAny])
def session_disconnect(request, session_id):
    """
    Disconnect a session. Admin and system actors need the X-Admin-Access
    header (or a staff login); a user may disconnect only their own device.
    """
    serializer = DisconnectSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    actor = serializer.validated_data["actor"]
    result = disconnect(
        session_id,
        serializer.validated_data.get("mac_address") or None,
        actor,
        admin_key=get_admin_key(request),
        admin_verified=actor != "user" and is_staff_request(request),
    )

    return Response(
        {
            "success": True,
            "message": "Session disconnected" if result["changed"] else "Session already ended",
            "session": SessionSerializer(result["session"]).data,
        }
    )


@api_view(["GET"])
@permission_classes([AllowAny])
def current_session(request):
    """
    Session monitor: the device's active session, if any
    """
    mac_address = request.query_params.get("mac_address", "")
    session = current_session_for_device(mac_address)

    return Response(
        {
            "success": True,
            "has_active_session": session is not None,
            "session": SessionSerializer(session).data if session else None,
        }
    )


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================


@api_view(["GET"])
@permission_classes([IsAdminOrHasAdminKey])
def admin_active_sessions(request):
    """
    List active sessions for the admin monitor
    """
    sessions = list_active_sessions()
    return Response(
        {
            "success": True,
            "count": len(sessions),
            "sessions": SessionSerializer(sessions, many=True).data,
        }
    )


@api_view(["POST"])
@permission_classes([IsAdminOrHasAdminKey])
def admin_sweep_sessions(request):
    """
    Run the expiry sweep immediately
    """
    result = sweep_expired_sessions()
    http_status = status.HTTP_200_OK if result["success"] else status.HTTP_500_INTERNAL_SERVER_ERROR
    return Response(result, status=http_status)


@api_view(["POST"])
@permission_classes([IsAdminOrHasAdminKey])
def admin_generate_vouchers(request):
    """
    Generate a voucher batch. ?export=csv returns the batch as a CSV download.
    """
    serializer = GenerateVouchersSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    created_by = serializer.validated_data.get("created_by") or (
        request.user.username if request.user and request.user.is_authenticated else "api"
    )

    vouchers = generate_vouchers(
        package_id=serializer.validated_data["package_id"],
        quantity=serializer.validated_data["quantity"],
        prefix=serializer.validated_data.get("prefix", ""),
        admin_key=get_admin_key(request),
        created_by=created_by,
        admin_verified=is_staff_request(request),
    )

    if request.query_params.get("export") == "csv":
        response = HttpResponse(vouchers_to_csv(vouchers), content_type="text/csv")
        response["Content-Disposition"] = (
            f'attachment; filename="vouchers_{vouchers[0].batch_id}.csv"'
        )
        return response

    return Response(
        {
            "success": True,
            "message": f"Generated {len(vouchers)} vouchers",
            "batch_id": vouchers[0].batch_id,
            "vouchers": VoucherSerializer(vouchers, many=True).data,
        },
        status=status.HTTP_201_CREATED,
    )
