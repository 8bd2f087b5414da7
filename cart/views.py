from django.http import JsonResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from storefront.http import api_login_required, json_body, store_errors

from . import services


def _line_json(line):
    p = line.product
    return {
        "id": line.id,
        "quantity": line.quantity,
        "product": {
            "id": p.id,
            "name": p.name,
            "price": str(p.price),
            "stock": p.stock,
            "image_url": p.image_url,
        },
    }


@require_GET
@api_login_required
@store_errors
def cart_view(request):
    return JsonResponse({"cart": [_line_json(l) for l in services.cart_lines(request.user)]})


@csrf_exempt
@require_POST
@api_login_required
@store_errors
def add_view(request):
    body = json_body(request)
    if body is None:
        return HttpResponseBadRequest("Invalid JSON body")
    line = services.add_to_cart(request.user, body.get("product_id"), body.get("quantity", 1))
    return JsonResponse({"message": "Product added to cart", "cartItem": _line_json(line)})


@csrf_exempt
@require_http_methods(["PUT", "PATCH"])
@api_login_required
@store_errors
def update_view(request, line_id: int):
    body = json_body(request)
    if body is None:
        return HttpResponseBadRequest("Invalid JSON body")
    line = services.update_quantity(request.user, line_id, body.get("quantity"))
    if line is None:
        return JsonResponse({"message": "Item removed from cart"})
    return JsonResponse({"message": "Cart updated", "cartItem": _line_json(line)})


@csrf_exempt
@require_http_methods(["DELETE"])
@api_login_required
@store_errors
def remove_view(request, line_id: int):
    services.remove_line(request.user, line_id)
    return JsonResponse({"message": "Item removed from cart"})


@csrf_exempt
@require_http_methods(["DELETE"])
@api_login_required
@store_errors
def clear_view(request):
    services.clear_cart(request.user.pk)
    return JsonResponse({"message": "Cart cleared"})
