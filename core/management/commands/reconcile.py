from django.core.management.base import BaseCommand

from core.reconciliation import reconcile


class Command(BaseCommand):
	help = "Resolve stale orders with their providers and expire unverified deposits. Safe to re-run."

	def add_arguments(self, parser):
		parser.add_argument("--skip-orders", action="store_true", help="Do not sweep stale orders")
		parser.add_argument("--skip-deposits", action="store_true", help="Do not expire stale deposits")

	def handle(self, *args, **options):
		summary = reconcile(orders=not options["skip_orders"], deposits=not options["skip_deposits"])
		orders = summary.get("orders")
		if orders is not None:
			self.stdout.write(
				f"orders: checked={orders['checked']} resolved={orders['resolved']} "
				f"expired={orders['expired']} cancelled={orders['cancelled']} "
				f"refunded={orders['refunded']} deferred={orders['deferred']}"
			)
		if "deposits_expired" in summary:
			self.stdout.write(f"deposits expired: {summary['deposits_expired']}")
		self.stdout.write(self.style.SUCCESS("Reconciliation complete"))
