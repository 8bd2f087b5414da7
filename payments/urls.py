from django.urls import path
from . import views
app_name = "payments"
urlpatterns = [
    path("webhook", views.paystack_webhook, name="webhook"),
    path("verify", views.verify_payment_view, name="verify"),
    path("status/<str:reference>", views.payment_status_view, name="status"),
]
