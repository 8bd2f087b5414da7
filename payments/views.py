from django.http import JsonResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from storefront.http import api_login_required, json_body, store_errors

from . import reconciliation
from .paystack import get_gateway


@csrf_exempt
@require_POST
@store_errors
def paystack_webhook(request):
    """Paystack event delivery.

    Unauthenticated on purpose: the HMAC over ``request.body`` is the only
    credential, so the raw bytes are handed over before any JSON parsing.
    """
    signature = (
        request.headers.get("X-Paystack-Signature")
        or request.headers.get("X-Signature")
        or ""
    )
    result = reconciliation.handle_webhook(request.body, signature, get_gateway())
    body = {"received": True}
    if result.already_processed:
        body["status"] = "already_processed"
    return JsonResponse(body)


@csrf_exempt
@require_POST
@api_login_required
@store_errors
def verify_payment_view(request):
    body = json_body(request)
    if body is None:
        return HttpResponseBadRequest("Invalid JSON body")

    result = reconciliation.verify_payment(request.user, body.get("reference"), get_gateway())
    order_id = result.order.pk if result.order else None

    if result.order is not None and result.order.is_paid:
        return JsonResponse({
            "status": "success",
            "message": "Payment already verified" if result.already_processed else "Payment verified successfully",
            "order_id": order_id,
            "already_processed": result.already_processed,
        })
    if result.outcome == reconciliation.OUTCOME_PENDING:
        return JsonResponse({
            "status": "pending",
            "message": "Payment not completed yet",
            "order_id": order_id,
            "gateway_response": result.gateway_response,
        }, status=202)
    return JsonResponse({
        "status": "failed",
        "message": "Payment verification failed",
        "order_id": order_id,
        "gateway_response": result.gateway_response,
    }, status=400)


@require_GET
@api_login_required
@store_errors
def payment_status_view(request, reference: str):
    return JsonResponse(reconciliation.payment_status(request.user, reference))
