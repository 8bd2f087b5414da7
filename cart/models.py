from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from catalog.models import Product


class CartLine(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="cart_lines")
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="cart_lines")
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("created_at", "id")
        constraints = [
            models.UniqueConstraint(fields=["user", "product"], name="unique_cart_line_per_product"),
        ]

    def __str__(self):
        return f"{self.user_id} x{self.quantity} {self.product_id}"
