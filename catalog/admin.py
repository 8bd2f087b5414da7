from django.contrib import admin
from .models import Category, Product, Discount


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "category", "price", "stock", "created_at")
    search_fields = ("name",)
    list_filter = ("category",)
    readonly_fields = ("created_at",)


@admin.register(Discount)
class DiscountAdmin(admin.ModelAdmin):
    list_display = ("code", "percentage", "valid_until")
    search_fields = ("code",)

admin.site.register(Category)
