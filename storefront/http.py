import json
import logging
from functools import wraps

from django.http import JsonResponse

from .errors import StoreError

logger = logging.getLogger(__name__)


def json_body(request):
    """Parsed JSON object, or None when the body is not a JSON object."""
    try: body = json.loads(request.body.decode("utf-8") or "{}")
    except Exception: return None
    return body if isinstance(body, dict) else None


def error_response(exc: StoreError) -> JsonResponse:
    return JsonResponse(exc.as_dict(), status=exc.status_code)


def api_login_required(view):
    """Like ``login_required`` but answers 401 JSON instead of redirecting."""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"error": "Authentication required"}, status=401)
        return view(request, *args, **kwargs)
    return wrapper


def staff_required(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"error": "Authentication required"}, status=401)
        if not request.user.is_staff:
            return JsonResponse({"error": "Admin access required"}, status=403)
        return view(request, *args, **kwargs)
    return wrapper


def store_errors(view):
    """Map workflow errors to JSON; never leak a raw exception to the caller."""
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except StoreError as e:
            if e.status_code >= 500:
                logger.warning("%s %s failed: %s", request.method, request.path, e)
            return error_response(e)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.path)
            return JsonResponse({"error": "Internal server error"}, status=500)
    return wrapper
