"""Database models for the wallet + fulfillment core.


Tables:
- Account: wallet owner with a single running balance (never negative)
- TransactionStatus / TransactionDirection / TransactionKind
- Transaction: append-only ledger rows; balance_before/after captured at mutation time
- OrderStatus / ProductKind
- Order: one fulfillment request and its lifecycle against an upstream provider
- Referral: referrer -> referee link with a commission-eligible purchase counter
- ReferralCommission: one row per purchase debit that paid (or was evaluated for) commission
- Setting: typed runtime configuration overrides (see core.config)
"""

import secrets
import uuid
from django.db import models
from django.db.models import Q


class ProductKind(models.TextChoices):
	PHONE_NUMBER = "phone_number", "Temporary phone number"
	ESIM = "esim", "eSIM profile"
	SMM = "smm", "Social media engagement"
	VOUCHER = "voucher", "Digital voucher"


def generate_reference(prefix: str = "TXN") -> str:
	# Named function = migration-friendly default
	return f"{prefix}-{uuid.uuid4().hex[:20].upper()}"


def generate_order_reference() -> str:
	return generate_reference("ORD")


class Account(models.Model):
	"""
	Wallet owner. balance is only ever changed by core.ledger.

	ledger_sequence is bumped by every balance mutation; the ledger stamps it on the
	Transaction that moved the money so the log can be replayed in mutation order.
	"""
	id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
	email = models.EmailField(unique=True)
	display_name = models.CharField(max_length=200)
	balance = models.DecimalField(max_digits=18, decimal_places=2, default=0)
	ledger_sequence = models.BigIntegerField(default=0)
	referral_code = models.CharField(max_length=16, unique=True, null=True, blank=True)
	is_active = models.BooleanField(default=True)
	created_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		constraints = [
			models.CheckConstraint(condition=Q(balance__gte=0), name="account_balance_non_negative"),
		]

	def __str__(self):
		return f"Account {self.email} - Balance: {self.balance}"


class TransactionDirection(models.TextChoices):
	CREDIT = "credit", "Credit"
	DEBIT = "debit", "Debit"


class TransactionStatus(models.TextChoices):
	PENDING = "pending", "Pending"
	COMPLETED = "completed", "Completed"
	FAILED = "failed", "Failed"
	CANCELLED = "cancelled", "Cancelled"
	EXPIRED = "expired", "Expired"


class TransactionKind(models.TextChoices):
	PURCHASE = "purchase", "Purchase"
	REFUND = "refund", "Refund"
	DEPOSIT = "deposit", "Deposit"
	COMMISSION = "commission", "Referral commission"
	BONUS = "bonus", "Bonus"
	ADJUSTMENT = "adjustment", "Adjustment"


class Transaction(models.Model):
	"""
	Append-only ledger row.

	reference is unique to prevent double-credit on retried gateway callbacks and
	double refunds on racing cancellations. sequence is null until money moves
	(e.g., a deposit waiting for gateway verification).
	"""
	id = models.BigAutoField(primary_key=True)
	account = models.ForeignKey(Account, on_delete=models.PROTECT, related_name="transactions")
	direction = models.CharField(max_length=10, choices=TransactionDirection.choices)
	kind = models.CharField(max_length=16, choices=TransactionKind.choices)
	amount = models.DecimalField(max_digits=18, decimal_places=2)
	balance_before = models.DecimalField(max_digits=18, decimal_places=2, null=True, blank=True)
	balance_after = models.DecimalField(max_digits=18, decimal_places=2, null=True, blank=True)
	sequence = models.BigIntegerField(null=True, blank=True)
	status = models.CharField(max_length=16, choices=TransactionStatus.choices, default=TransactionStatus.PENDING)
	reference = models.CharField(max_length=64, unique=True, default=generate_reference)
	payment_method = models.CharField(max_length=32, default="wallet")
	gateway_reference = models.CharField(max_length=128, blank=True, default="")
	description = models.CharField(max_length=255, blank=True, default="")
	metadata = models.JSONField(default=dict, blank=True)
	created_at = models.DateTimeField(auto_now_add=True)
	updated_at = models.DateTimeField(auto_now=True)

	class Meta:
		indexes = [
			models.Index(fields=["account", "sequence"]),
			models.Index(fields=["status", "kind"]),
		]
		constraints = [
			models.UniqueConstraint(
				fields=["account", "sequence"],
				condition=Q(sequence__isnull=False),
				name="transaction_unique_account_sequence",
			),
			models.CheckConstraint(condition=Q(amount__gt=0), name="transaction_amount_positive"),
		]

	@property
	def is_posted(self) -> bool:
		return self.sequence is not None

	@property
	def signed_amount(self):
		return self.amount if self.direction == TransactionDirection.CREDIT else -self.amount

	def __str__(self):
		return f"{self.reference} {self.direction} {self.amount} ({self.status})"


class OrderStatus(models.TextChoices):
	PENDING = "pending", "Pending"
	PROCESSING = "processing", "Processing"
	COMPLETED = "completed", "Completed"
	FAILED = "failed", "Failed"
	CANCELLED = "cancelled", "Cancelled"
	REFUNDED = "refunded", "Refunded"
	EXPIRED = "expired", "Expired"


ACTIVE_ORDER_STATUSES = (OrderStatus.PENDING, OrderStatus.PROCESSING)
TERMINAL_ORDER_STATUSES = (
	OrderStatus.COMPLETED,
	OrderStatus.FAILED,
	OrderStatus.CANCELLED,
	OrderStatus.REFUNDED,
	OrderStatus.EXPIRED,
)


class Order(models.Model):
	"""
	One fulfillment request. Created in the same atomic unit as its pending debit,
	so an Order row always has reserved funds behind it.

	provider_identifier pins every later lifecycle call to the provider that served it.
	"""
	id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
	reference = models.CharField(max_length=64, unique=True, default=generate_order_reference)
	account = models.ForeignKey(Account, on_delete=models.PROTECT, related_name="orders")
	kind = models.CharField(max_length=16, choices=ProductKind.choices)
	status = models.CharField(max_length=16, choices=OrderStatus.choices, default=OrderStatus.PENDING)
	amount_charged = models.DecimalField(max_digits=18, decimal_places=2)
	provider_identifier = models.CharField(max_length=50)
	provider_reference = models.CharField(max_length=128, blank=True, default="")
	region = models.CharField(max_length=64, blank=True, default="")
	operator = models.CharField(max_length=64, blank=True, default="")
	item_code = models.CharField(max_length=128)
	native_status = models.CharField(max_length=64, blank=True, default="")
	delivered_payload = models.JSONField(default=dict, blank=True)
	expires_at = models.DateTimeField(null=True, blank=True)
	failure_reason = models.TextField(blank=True, default="")
	debit_transaction = models.OneToOneField(Transaction, on_delete=models.PROTECT, related_name="purchase_order")
	refund_transaction = models.OneToOneField(
		Transaction, null=True, blank=True, on_delete=models.PROTECT, related_name="refunded_order"
	)
	created_at = models.DateTimeField(auto_now_add=True)
	updated_at = models.DateTimeField(auto_now=True)

	class Meta:
		indexes = [
			models.Index(fields=["status", "expires_at"]),
			models.Index(fields=["account", "status"]),
		]

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_ORDER_STATUSES

	@property
	def is_active(self) -> bool:
		return self.status in ACTIVE_ORDER_STATUSES

	@property
	def has_deliverable(self) -> bool:
		return bool(self.delivered_payload)

	@property
	def refund_reference(self) -> str:
		# one refund per order, enforced by Transaction.reference uniqueness
		return f"{self.reference}-R"

	def __str__(self):
		return f"Order {self.reference} [{self.kind}] {self.status}"


class Referral(models.Model):
	"""
	referee is unique: an account can be referred at most once
	"""
	STATUS_CHOICES = (("active", "Active"), ("suspended", "Suspended"))

	id = models.BigAutoField(primary_key=True)
	referrer = models.ForeignKey(Account, on_delete=models.CASCADE, related_name="referrals")
	referee = models.OneToOneField(Account, on_delete=models.CASCADE, related_name="referred_by")
	code = models.CharField(max_length=16)
	status = models.CharField(max_length=16, choices=STATUS_CHOICES, default="active")
	purchase_count = models.IntegerField(default=0)
	total_commission = models.DecimalField(max_digits=18, decimal_places=2, default=0)
	created_at = models.DateTimeField(auto_now_add=True)


class ReferralCommission(models.Model):
	"""
	Idempotent on trigger_transaction: a purchase debit is evaluated for commission once.
	"""
	id = models.BigAutoField(primary_key=True)
	referral = models.ForeignKey(Referral, on_delete=models.PROTECT, related_name="commissions")
	trigger_transaction = models.OneToOneField(Transaction, on_delete=models.PROTECT, related_name="commission_trigger")
	commission_transaction = models.OneToOneField(
		Transaction, null=True, blank=True, on_delete=models.PROTECT, related_name="commission_payout"
	)
	transaction_amount = models.DecimalField(max_digits=18, decimal_places=2)
	rate = models.DecimalField(max_digits=6, decimal_places=2)
	amount = models.DecimalField(max_digits=18, decimal_places=2)
	created_at = models.DateTimeField(auto_now_add=True)


def generate_referral_code() -> str:
	return secrets.token_hex(4).upper()


class Setting(models.Model):
	"""
	Runtime configuration override. value is stored as text and cast by value_type.
	"""
	TYPE_CHOICES = (("str", "String"), ("int", "Integer"), ("decimal", "Decimal"), ("bool", "Boolean"), ("json", "JSON"))

	key = models.CharField(max_length=100, unique=True)
	value = models.TextField()
	value_type = models.CharField(max_length=10, choices=TYPE_CHOICES, default="str")
	updated_at = models.DateTimeField(auto_now=True)
