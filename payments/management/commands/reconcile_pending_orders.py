import time
from django.core.management.base import BaseCommand
from django.utils import timezone

from orders.models import Order, PaymentStatus
from payments.paystack import get_gateway
from payments.reconciliation import apply_failure, apply_success
from storefront.errors import GatewayError, StoreError


class Command(BaseCommand):
    help = "Poll Paystack for pending orders and apply the payment outcome locally"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=100, help="Max orders to process")
        parser.add_argument("--minutes", type=int, default=0, help="Only orders created within last N minutes (0=all)")
        parser.add_argument("--sleep", type=float, default=0.0, help="Pause between gateway calls (seconds)")

    def handle(self, *args, **opts):
        qs = (
            Order.objects.filter(payment_status=PaymentStatus.PENDING, payment_reference__isnull=False)
            .order_by("created_at")
        )
        if opts["minutes"] > 0:
            cutoff = timezone.now() - timezone.timedelta(minutes=opts["minutes"])
            qs = qs.filter(created_at__gte=cutoff)

        orders = list(qs[: opts["max"]])
        if not orders:
            self.stdout.write(self.style.SUCCESS("No pending orders to reconcile."))
            return

        gateway = get_gateway()
        checked = updated = 0
        for o in orders:
            checked += 1
            try:
                data = gateway.verify(o.payment_reference)
                status = data["status"]
                if status == "success":
                    result = apply_success(o.pk, reference=data["reference"], payload=data)
                elif status == "failed":
                    result = apply_failure(o.pk, reference=data["reference"], payload=data)
                else:
                    self.stdout.write(f"Order {o.pk}: status={status or 'UNKNOWN'}")
                    continue
                if result.applied:
                    updated += 1
                self.stdout.write(self.style.SUCCESS(f"Order {o.pk} -> {result.order.payment_status}"))
            except GatewayError as e:
                self.stdout.write(self.style.WARNING(f"Order {o.pk}: {e}"))
            except StoreError as e:
                self.stdout.write(self.style.ERROR(f"Order {o.pk}: {e}"))
            if opts["sleep"]:
                time.sleep(opts["sleep"])

        self.stdout.write(self.style.SUCCESS(f"Checked {checked}, updated {updated} orders."))
