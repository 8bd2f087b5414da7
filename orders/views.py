from django.http import JsonResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from payments.paystack import get_gateway
from storefront.http import api_login_required, json_body, staff_required, store_errors

from . import services
from .serializers import order_to_dict


@csrf_exempt
@require_POST
@api_login_required
@store_errors
def create_order_view(request):
    body = json_body(request)
    if body is None:
        return HttpResponseBadRequest("Invalid JSON body")

    result = services.create_order(
        request.user,
        state=body.get("state"),
        city=body.get("city"),
        address=body.get("address"),
        email=(body.get("email") or "").strip(),
        phone=body.get("phone"),
        discount_code=body.get("discount_code"),
        gateway=get_gateway(),
    )
    return JsonResponse({
        "message": "Order created successfully",
        "order": order_to_dict(result.order),
        "payment": result.payment,
    }, status=201)


@require_GET
@api_login_required
@store_errors
def order_list_view(request):
    orders, pagination = services.list_orders(
        request.user, request.GET.get("page", 1), request.GET.get("limit", 10)
    )
    return JsonResponse({"orders": [order_to_dict(o) for o in orders], "pagination": pagination})


@require_GET
@api_login_required
@store_errors
def order_detail_view(request, order_id: int):
    return JsonResponse({"order": order_to_dict(services.get_order(request.user, order_id))})


@csrf_exempt
@require_POST
@api_login_required
@store_errors
def retry_payment_view(request, order_id: int):
    body = json_body(request)
    if body is None:
        return HttpResponseBadRequest("Invalid JSON body")
    result = services.retry_payment(
        request.user, order_id, email=(body.get("email") or "").strip(), gateway=get_gateway()
    )
    return JsonResponse({"message": "Payment initialized successfully", "payment": result.payment})


@csrf_exempt
@require_http_methods(["PUT", "PATCH"])
@staff_required
@store_errors
def admin_order_status_view(request, order_id: int):
    body = json_body(request)
    if body is None:
        return HttpResponseBadRequest("Invalid JSON body")
    order = services.set_order_status(order_id, body.get("order_status"))
    return JsonResponse({"message": "Order status updated successfully", "order": order_to_dict(order)})
