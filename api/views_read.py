"""Read-only endpoints (balance, ledger, orders, catalog, referral stats, ops summary)."""

from django.conf import settings
from django.http import JsonResponse

from core.adapters.registry import get_registry
from core.config import current_config
from core.ledger import latest_posted_balance, reconstruct_balance
from core.models import Order, OrderStatus, ProductKind
from core.referrals import referral_stats
from core.services import FulfillmentService
from .helpers import api_view, current_account, order_json, transaction_json


@api_view()
def balance(request):
	"""
	GET: Current wallet balance
	"""
	account = current_account(request)
	return JsonResponse({"balance": f"{account.balance:.2f}", "currency": settings.WALLET_CURRENCY})


@api_view()
def transactions(request):
	"""
	GET: Most recent ledger rows for this account
	"""
	account = current_account(request)
	rows = account.transactions.order_by("-created_at", "-id")[:50]
	return JsonResponse({"transactions": [transaction_json(t) for t in rows]})


@api_view()
def orders(request):
	"""
	GET: Orders for this account, optionally ?status=
	"""
	account = current_account(request)
	status = request.GET.get("status") or None
	if status and status not in OrderStatus.values:
		raise ValueError(f"unknown status {status!r}")
	rows = FulfillmentService().list_orders(account, status)[:50]
	return JsonResponse({"orders": [order_json(o) for o in rows]})


@api_view()
def order_detail(request, reference):
	"""
	GET: One order, refreshed from its provider while it is still open
	"""
	account = current_account(request)
	order = Order.objects.get(reference=reference, account=account)
	order = FulfillmentService().check_status(order)
	return JsonResponse({"order": order_json(order)})


@api_view()
def catalog(request):
	"""
	GET: ?kind=&region= merged catalog with retail prices. warning=true means cached or static data.
	"""
	kind = request.GET.get("kind", ProductKind.PHONE_NUMBER)
	if kind not in ProductKind.values:
		raise ValueError(f"unknown kind {kind!r}")
	result = get_registry().catalog(kind, request.GET.get("region", ""), current_config())
	return JsonResponse({"items": result.items, "warning": result.warning, "source": result.source})


@api_view()
def referrals(request):
	account = current_account(request)
	return JsonResponse(referral_stats(account))


@api_view()
def provider_balances(request):
	return JsonResponse({"providers": get_registry().provider_balances()})


@api_view()
def debug_summary(request):
	"""
	GET: Ledger consistency for this account: stored balance vs. replayed log
	"""
	account = current_account(request)
	replayed = reconstruct_balance(account)
	latest = latest_posted_balance(account)
	return JsonResponse({
		"balance": f"{account.balance:.2f}",
		"reconstructed": f"{replayed:.2f}",
		"latest_balance_after": f"{latest:.2f}",
		"match": account.balance == replayed == latest,
		"open_orders": account.orders.filter(status__in=[OrderStatus.PENDING, OrderStatus.PROCESSING]).count(),
		"config_version": current_config().version,
		"notes": "reconstructed should equal balance when everything is consistent.",
	})
