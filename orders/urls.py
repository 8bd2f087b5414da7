from django.urls import path
from . import views
app_name = "orders"
urlpatterns = [
    path("", views.order_list_view, name="list"),
    path("create", views.create_order_view, name="create"),
    path("<int:order_id>", views.order_detail_view, name="detail"),
    path("<int:order_id>/retry-payment", views.retry_payment_view, name="retry_payment"),
]
