"""Endpoints that move money or orders forward (signup, purchase, lifecycle, deposits)."""

from django.http import JsonResponse
from django.middleware.csrf import get_token

from core.accounts import create_account
from core.errors import ReconciliationRequired, VerificationMismatch
from core.models import Order, TransactionKind, TransactionStatus
from core.payments import initialize_deposit, verify_deposit
from core.referrals import apply_referral_code
from core.services import FulfillmentService
from .helpers import api_view, current_account, order_json, read_json


def health(request):
	return JsonResponse({"ok": True})


def csrf(request):
	# Forces creation/rotation of the CSRF token AND sets 'csrftoken' cookie
	return JsonResponse({"csrftoken": get_token(request)})


@api_view(methods=("POST",))
def signup(request):
	"""
	POST: {email, display_name?, referral_code?} -> new account (+ signup bonus when referred)
	"""
	body = read_json(request)
	email = (body.get("email") or "").strip()
	if not email:
		raise ValueError("email required")
	account = create_account(email, body.get("display_name", ""), body.get("referral_code") or None)
	account.refresh_from_db()
	return JsonResponse({
		"success": True,
		"account_id": str(account.id),
		"referral_code": account.referral_code,
		"balance": f"{account.balance:.2f}",
	}, status=201)


@api_view(methods=("POST",))
def apply_referral(request):
	"""
	POST: {code} -> link this account to a referrer
	"""
	account = current_account(request)
	body = read_json(request)
	apply_referral_code(account, body.get("code", ""))
	account.refresh_from_db()
	return JsonResponse({"success": True, "balance": f"{account.balance:.2f}"})


@api_view(methods=("POST",))
def purchase(request):
	"""
	POST: {kind, region, item_code, strategy?, provider_id?}

	201 with the order, or 202 when the provider has not answered yet and the order
	was left for reconciliation.
	"""
	account = current_account(request)
	body = read_json(request)
	for field in ("kind", "item_code"):
		if not body.get(field):
			raise ValueError(f"{field} required")

	order = FulfillmentService().purchase(
		account,
		body["kind"],
		body.get("region", ""),
		body["item_code"],
		strategy=body.get("strategy", "cheapest"),
		provider_id=body.get("provider_id") or None,
	)
	if order.debit_transaction.status == TransactionStatus.PENDING:
		return JsonResponse(
			{"success": True, "message": ReconciliationRequired.user_message, "order": order_json(order)},
			status=ReconciliationRequired.status_code,
		)
	return JsonResponse({"success": True, "order": order_json(order)}, status=201)


def _own_order(request, reference) -> Order:
	account = current_account(request)
	return Order.objects.get(reference=reference, account=account)


@api_view(methods=("POST",))
def cancel_order(request, reference):
	order = FulfillmentService().cancel(_own_order(request, reference))
	return JsonResponse({"success": True, "message": "Order cancelled and refunded.", "order": order_json(order)})


@api_view(methods=("POST",))
def finish_order(request, reference):
	order = FulfillmentService().finish(_own_order(request, reference))
	return JsonResponse({"success": True, "order": order_json(order)})


@api_view(methods=("POST",))
def report_order(request, reference):
	"""
	POST: {reason?} -> refund an order whose deliverable did not work
	"""
	body = read_json(request)
	order = FulfillmentService().report_bad(_own_order(request, reference), body.get("reason", ""))
	return JsonResponse({"success": True, "message": "Reported and refunded.", "order": order_json(order)})


@api_view(methods=("POST",))
def start_deposit(request):
	"""
	POST: {amount, gateway?} -> {reference, redirect_url}
	"""
	account = current_account(request)
	body = read_json(request)
	if body.get("amount") in (None, ""):
		raise ValueError("amount required")
	txn, checkout = initialize_deposit(account, body["amount"], body.get("gateway", "stub"))
	return JsonResponse({
		"success": True,
		"reference": txn.reference,
		"amount": f"{txn.amount:.2f}",
		"redirect_url": checkout["redirect_url"],
	}, status=201)


@api_view(methods=("POST",))
def confirm_deposit(request):
	"""
	POST: {reference, gateway_txn_id?} -> credit the wallet once the gateway confirms payment
	"""
	account = current_account(request)
	body = read_json(request)
	reference = body.get("reference")
	if not reference:
		raise ValueError("reference required")
	if not account.transactions.filter(reference=reference, kind=TransactionKind.DEPOSIT).exists():
		raise VerificationMismatch(f"deposit {reference} does not belong to {account.pk}")
	txn = verify_deposit(reference, body.get("gateway_txn_id"))
	account.refresh_from_db()
	return JsonResponse({
		"success": txn.status == TransactionStatus.COMPLETED,
		"status": txn.status,
		"balance": f"{account.balance:.2f}",
	})
