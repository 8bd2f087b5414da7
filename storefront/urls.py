from django.contrib import admin
from django.urls import include, path

from orders.views import admin_order_status_view
from .views import health_view

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/health", health_view, name="health"),
    path("api/cart/", include("cart.urls")),
    path("api/orders/", include("orders.urls")),
    path("api/paystack/", include("payments.urls")),
    path("api/admin/orders/<int:order_id>/status", admin_order_status_view, name="admin_order_status"),
]
