"""HTTP endpoints for the vendor stub.

The stub adapter uses ORM access for determinism; these endpoints mirror what a
real vendor exposes and speak the JSON wire format core.adapters.http_provider
consumes. A scripted hang answers 504 so the HTTP client sees an unknown outcome.
"""

import json
from decimal import Decimal
from django.http import JsonResponse, HttpResponseBadRequest
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from . import vendor as stub_vendor
from .models import StubPayment, StubPaymentStatus, VendorAccount


def _offline(vendor):
	return JsonResponse({"error": "offline", "message": f"{vendor} is offline"}, status=503)


@require_GET
def balance(request, vendor):
	"""
	GET: The shop's prepaid balance at this vendor
	"""
	acct = VendorAccount.objects.filter(vendor=vendor).first()
	if acct is None or not acct.online:
		return _offline(vendor)
	return JsonResponse({"balance": f"{acct.balance:.2f}", "currency": acct.currency})


@require_GET
def catalog(request, vendor):
	"""
	GET: In-stock items for ?region=
	"""
	try:
		stub_vendor.ensure_online(vendor)
	except stub_vendor.VendorOffline:
		return _offline(vendor)
	items = {}
	for item in stub_vendor.items_for(vendor, request.GET.get("region", "")):
		if item.stock > 0 and item.code not in items:
			items[item.code] = {
				"code": item.code,
				"display_name": item.display_name or item.code,
				"cost": str(item.cost),
				"currency": item.currency,
				"available": item.stock,
			}
	return JsonResponse({"items": list(items.values())})


@require_GET
def quote(request, vendor):
	"""
	GET: Per-operator prices for ?region=&item=
	"""
	try:
		stub_vendor.ensure_online(vendor)
	except stub_vendor.VendorOffline:
		return _offline(vendor)
	rows = stub_vendor.items_for(vendor, request.GET.get("region", ""), request.GET.get("item", ""))
	data = [
		{
			"operator": item.operator,
			"cost": str(item.cost),
			"currency": item.currency,
			"available": item.stock,
			"eta_seconds": item.eta_seconds,
		}
		for item in rows
		if item.stock > 0
	]
	return JsonResponse({"quotes": data})


@csrf_exempt
@require_POST
def create_order(request, vendor):
	"""
	POST: {region, operator, item, customer} -> 201 {order_id, status, payload}
	"""
	body = json.loads(request.body or b"{}")
	if not body.get("item"):
		return HttpResponseBadRequest("item required")
	try:
		order, error = stub_vendor.place_order(
			vendor, body.get("region", ""), body.get("operator", "any"), body["item"], body.get("customer", "")
		)
	except stub_vendor.VendorHang:
		return JsonResponse({"error": "gateway_timeout"}, status=504)
	except stub_vendor.VendorOffline:
		return _offline(vendor)
	if order is None:
		return JsonResponse({"error": error, "message": "Order rejected"}, status=409 if error == "no_inventory" else 422)
	return JsonResponse(_order_json(order), status=201)


@require_GET
def order_detail(request, vendor, order_id):
	try:
		stub_vendor.ensure_online(vendor)
	except stub_vendor.VendorOffline:
		return _offline(vendor)
	order = stub_vendor.get_order(vendor, order_id)
	if order is None:
		return JsonResponse({"error": "not_found"}, status=404)
	return JsonResponse(_order_json(order))


@csrf_exempt
@require_POST
def order_action(request, vendor, order_id, action):
	"""
	POST: cancel | finish | report -> {ok}
	"""
	if action not in ("cancel", "finish", "report"):
		return HttpResponseBadRequest("unknown action")
	try:
		ok = stub_vendor.apply_action(vendor, order_id, action)
	except stub_vendor.VendorOffline:
		return _offline(vendor)
	return JsonResponse({"ok": ok})


def _order_json(order):
	return {
		"order_id": order.order_id,
		"status": order.native_status,
		"payload": order.payload or {},
		"undelivered_ratio": str(order.undelivered_ratio),
		"expires_at": order.expires_at.isoformat() if order.expires_at else None,
	}


# --- Payment gateway -----------------------------------------------------------

@csrf_exempt
def pay(request, reference):
	"""
	GET: Checkout summary. POST: Simulate the customer paying (optional {amount} to tamper)
	"""
	payment = get_object_or_404(StubPayment, reference=reference)
	if request.method == "POST":
		body = json.loads(request.body or b"{}")
		if body.get("abandon"):
			payment.status = StubPaymentStatus.ABANDONED
			payment.save(update_fields=["status"])
		else:
			payment.confirm(Decimal(str(body["amount"])) if body.get("amount") else None)
	return JsonResponse({
		"reference": payment.reference,
		"amount": f"{payment.amount:.2f}",
		"status": payment.status,
	})


@require_GET
def payment_status(request, reference):
	"""
	GET: What a gateway's verify endpoint returns
	"""
	payment = get_object_or_404(StubPayment, reference=reference)
	return JsonResponse({
		"reference": payment.reference,
		"status": payment.status,
		"amount": f"{payment.paid_amount:.2f}" if payment.paid_amount is not None else None,
		"gateway_txn_id": payment.gateway_txn_id,
	})
