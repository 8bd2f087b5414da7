from django.urls import path
from . import views
app_name = "cart"
urlpatterns = [
    path("", views.cart_view, name="cart"),
    path("add", views.add_view, name="add"),
    path("update/<int:line_id>", views.update_view, name="update"),
    path("remove/<int:line_id>", views.remove_view, name="remove"),
    path("clear", views.clear_view, name="clear"),
]
