"""Vendor-side behavior shared by the ORM adapter and the HTTP mirror.

Each vendor speaks one status family ("phone_number", "esim", "smm",
"voucher"); the family decides which native status an action lands on.
"""

import logging

from .models import VendorAccount, VendorBehavior, VendorItem, VendorOrder

logger = logging.getLogger(__name__)

OPEN_STATUSES = {"PENDING", "RECEIVED", "ACCEPTED", "AUTHORIZED", "IN_PROGRESS", "IN PROGRESS", "PROCESSING"}

ACTION_STATUS = {
	"phone_number": {"cancel": "CANCELED", "finish": "FINISHED", "report": "BANNED"},
	"esim": {"cancel": "CANCELLED", "finish": "DONE", "report": "CANCELLED"},
	"smm": {"cancel": "CANCELED", "finish": "COMPLETED", "report": "CANCELED"},
	"voucher": {"cancel": "CANCELLED", "finish": "DONE", "report": "CANCELLED"},
}


class VendorOffline(Exception):
	pass


class VendorHang(Exception):
	"""The vendor accepted the connection but never answered."""


def ensure_online(vendor: str) -> None:
	acct = VendorAccount.objects.filter(vendor=vendor).first()
	if acct is not None and not acct.online:
		raise VendorOffline(vendor)


def items_for(vendor: str, region: str = "", code: str = ""):
	qs = VendorItem.objects.filter(vendor=vendor)
	if region:
		qs = qs.filter(region=region)
	if code:
		qs = qs.filter(code=code)
	return qs.order_by("cost", "id")


def place_order(vendor: str, region: str, operator: str, code: str, customer_ref: str):
	"""
	Returns (VendorOrder, "") on success or (None, error_code) on a definite rejection.
	Raises VendorOffline / VendorHang for the scripted transport failures.
	"""
	ensure_online(vendor)
	qs = items_for(vendor, region, code)
	if operator and operator != "any":
		qs = qs.filter(operator=operator)
	item = qs.first()
	if item is None:
		return None, "no_inventory"

	if item.behavior == VendorBehavior.TIMEOUT:
		raise VendorHang(vendor)
	if item.behavior == VendorBehavior.UNAVAILABLE:
		raise VendorOffline(vendor)
	if item.behavior == VendorBehavior.FAIL:
		return None, "rejected"
	if item.behavior == VendorBehavior.NO_INVENTORY or not item.take_one():
		return None, "no_inventory"

	order = VendorOrder.objects.create(
		vendor=vendor,
		item=item,
		region=item.region,
		operator=item.operator,
		customer_ref=str(customer_ref),
		native_status=item.initial_status,
		payload=item.deliverable or {},
		cancellable=item.cancellable,
	)
	logger.info("Vendor order placed", extra={"vendor": vendor, "order_id": order.order_id})
	return order, ""


def get_order(vendor: str, order_id: str):
	return VendorOrder.objects.filter(vendor=vendor, order_id=order_id).select_related("item").first()


def apply_action(vendor: str, order_id: str, action: str) -> bool:
	"""
	cancel / finish / report. False when the vendor refuses (closed order, not cancellable,
	finish before anything was delivered).
	"""
	ensure_online(vendor)
	order = get_order(vendor, order_id)
	if order is None or order.native_status.upper() not in OPEN_STATUSES:
		return False
	if action == "cancel" and not order.cancellable:
		return False
	if action == "finish" and not order.payload:
		return False
	order.native_status = ACTION_STATUS[order.item.family][action]
	order.save(update_fields=["native_status", "updated_at"])
	return True
