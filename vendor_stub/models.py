"""Deterministic in-process upstream vendor and payment gateway.

One table set serves every configured vendor, keyed by the vendor identifier
(e.g. "sms-alpha"). Items carry a scripted behavior so tests and demos can
force success, rejection, stock-out or a hung call without network access.
Used by core.adapters.stub_provider (ORM) and mirrored over HTTP by the views.
"""

import uuid
from decimal import Decimal
from django.db import models
from django.db.models import F
from django.utils.timezone import now


class VendorBehavior(models.TextChoices):
	OK = "ok", "Fulfil normally"
	FAIL = "fail", "Reject the order"
	TIMEOUT = "timeout", "Never answer"
	NO_INVENTORY = "no_inventory", "Report out of stock"
	UNAVAILABLE = "unavailable", "Refuse the connection"


class VendorAccount(models.Model):
	"""
	The shop's prepaid balance held at one vendor. online=False makes every call fail.
	"""
	vendor = models.CharField(max_length=50, unique=True)
	balance = models.DecimalField(max_digits=18, decimal_places=2, default=0)
	currency = models.CharField(max_length=3, default="USD")
	online = models.BooleanField(default=True)


class VendorItem(models.Model):
	id = models.BigAutoField(primary_key=True)
	vendor = models.CharField(max_length=50)
	region = models.CharField(max_length=64)
	code = models.CharField(max_length=128)  # service / plan / product code
	# status family the vendor speaks: phone_number | esim | smm | voucher
	family = models.CharField(max_length=16, default="phone_number")
	display_name = models.CharField(max_length=200, blank=True, default="")
	operator = models.CharField(max_length=64, default="any")
	cost = models.DecimalField(max_digits=18, decimal_places=4)
	currency = models.CharField(max_length=3, default="USD")
	stock = models.IntegerField(default=100)
	eta_seconds = models.IntegerField(null=True, blank=True)
	behavior = models.CharField(max_length=16, choices=VendorBehavior.choices, default=VendorBehavior.OK)
	# native status and payload a fresh order starts with
	initial_status = models.CharField(max_length=32, default="PENDING")
	deliverable = models.JSONField(default=dict, blank=True)
	cancellable = models.BooleanField(default=True)

	class Meta:
		indexes = [models.Index(fields=["vendor", "region", "code"])]

	def take_one(self) -> bool:
		"""
		Reserve one unit of stock. False when sold out (conditional decrement).
		"""
		return VendorItem.objects.filter(pk=self.pk, stock__gt=0).update(stock=F("stock") - 1) == 1


def gen_vendor_order_id():
	# Named function = migration-friendly
	return f"VO-{uuid.uuid4().hex[:12]}"


class VendorOrder(models.Model):
	"""
	Append-only from the shop's side; tests move native_status/payload to simulate the vendor.
	"""
	id = models.BigAutoField(primary_key=True)
	order_id = models.CharField(max_length=64, unique=True, default=gen_vendor_order_id)
	vendor = models.CharField(max_length=50)
	item = models.ForeignKey(VendorItem, on_delete=models.PROTECT, related_name="orders")
	region = models.CharField(max_length=64)
	operator = models.CharField(max_length=64)
	customer_ref = models.CharField(max_length=64)
	native_status = models.CharField(max_length=32)
	payload = models.JSONField(default=dict, blank=True)
	undelivered_ratio = models.DecimalField(max_digits=5, decimal_places=4, default=Decimal("0"))
	cancellable = models.BooleanField(default=True)
	expires_at = models.DateTimeField(null=True, blank=True)
	created_at = models.DateTimeField(default=now)
	updated_at = models.DateTimeField(auto_now=True)


class StubPaymentStatus(models.TextChoices):
	PENDING = "pending", "Pending"
	SUCCESS = "success", "Success"
	FAILED = "failed", "Failed"
	ABANDONED = "abandoned", "Abandoned"


def gen_gateway_txn_id():
	return f"GW-{uuid.uuid4().hex[:10]}"


class StubPayment(models.Model):
	"""
	One checkout at the stub gateway. paid_amount may differ from amount to simulate tampering.
	"""
	id = models.BigAutoField(primary_key=True)
	reference = models.CharField(max_length=64, unique=True)
	customer_ref = models.CharField(max_length=64)
	amount = models.DecimalField(max_digits=18, decimal_places=2)
	paid_amount = models.DecimalField(max_digits=18, decimal_places=2, null=True, blank=True)
	status = models.CharField(max_length=16, choices=StubPaymentStatus.choices, default=StubPaymentStatus.PENDING)
	gateway_txn_id = models.CharField(max_length=64, unique=True, default=gen_gateway_txn_id)
	created_at = models.DateTimeField(default=now)

	def confirm(self, paid_amount=None):
		"""
		Simulate the customer completing checkout.
		"""
		self.status = StubPaymentStatus.SUCCESS
		self.paid_amount = self.amount if paid_amount is None else Decimal(str(paid_amount))
		self.save(update_fields=["status", "paid_amount"])
		return self
