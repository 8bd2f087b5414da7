from django.contrib import admin
from .models import CartLine


@admin.register(CartLine)
class CartLineAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "product", "quantity", "created_at")
    search_fields = ("user__username", "product__name")
    raw_id_fields = ("user", "product")
