"""Public API surface.

- /accounts, /referrals/apply: signup and referral linking
- /orders: purchase, then /orders/<ref>/{cancel,finish,report}
- /deposits, /deposits/verify: wallet funding through a gateway
- /balance, /transactions, /orders (GET), /catalog, /referrals: read-only views
- /ops/providers, /debug/summary: operator checks
"""

from django.urls import path
from .views_ops import (
	health, csrf, signup, apply_referral, purchase, cancel_order, finish_order, report_order, start_deposit, confirm_deposit,
)
from .views_read import balance, transactions, orders, order_detail, catalog, referrals, provider_balances, debug_summary


def orders_root(request):
	if request.method == "POST":
		return purchase(request)
	return orders(request)


urlpatterns = [
	path("health", health),
	path("csrf", csrf),
	path("accounts", signup),
	path("referrals", referrals),
	path("referrals/apply", apply_referral),
	path("balance", balance),
	path("transactions", transactions),
	path("orders", orders_root),
	path("orders/<str:reference>", order_detail),
	path("orders/<str:reference>/cancel", cancel_order),
	path("orders/<str:reference>/finish", finish_order),
	path("orders/<str:reference>/report", report_order),
	path("catalog", catalog),
	path("deposits", start_deposit),
	path("deposits/verify", confirm_deposit),
	path("ops/providers", provider_balances),
	path("debug/summary", debug_summary),
]
