from django.conf import settings
from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.http import require_GET


@require_GET
def health_view(request):
    return JsonResponse({
        "status": "OK",
        "message": "Health Excellence API is running",
        "timestamp": timezone.now().isoformat(),
        "paystack_configured": bool(getattr(settings, "PAYSTACK_SECRET_KEY", "")),
        "endpoints": {
            "webhook": request.build_absolute_uri("/api/paystack/webhook"),
            "verify": "/api/paystack/verify",
            "status": "/api/paystack/status/<reference>",
        },
    })
