"""Payment gateways used to fund wallets.

A gateway starts a checkout for a reference we generated and later reports what
was actually paid for it. core.payments never trusts the report blindly: the
reference and amount are cross-checked against the pending deposit first.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string

from vendor_stub.models import StubPayment, StubPaymentStatus

from core.errors import DepositRejected


@dataclass(frozen=True)
class VerificationResult:
	success: bool
	amount: Decimal | None
	status: str
	gateway_ref: str
	reference: str


class PaymentGateway(ABC):

	def __init__(self, name: str, **options):
		self.name = name
		self.options = options

	@abstractmethod
	def initialize_payment(self, account, amount: Decimal, reference: str) -> dict: ...

	@abstractmethod
	def verify_payment(self, reference: str, gateway_txn_id: str | None = None) -> VerificationResult: ...


class StubGateway(PaymentGateway):
	"""
	Checkout against vendor_stub.StubPayment. The customer "pays" by POSTing to the redirect URL.
	"""

	def initialize_payment(self, account, amount: Decimal, reference: str) -> dict:
		StubPayment.objects.create(reference=reference, customer_ref=str(account.pk), amount=amount)
		base = self.options.get("redirect_base", "").rstrip("/")
		return {"redirect_url": f"{base}/{reference}", "reference": reference}

	def verify_payment(self, reference: str, gateway_txn_id: str | None = None) -> VerificationResult:
		payment = StubPayment.objects.filter(reference=reference).first()
		if payment is None and gateway_txn_id:
			payment = StubPayment.objects.filter(gateway_txn_id=gateway_txn_id).first()
		if payment is None:
			return VerificationResult(success=False, amount=None, status="not_found", gateway_ref="", reference=reference)
		return VerificationResult(
			success=payment.status == StubPaymentStatus.SUCCESS,
			amount=payment.paid_amount,
			status=payment.status,
			gateway_ref=payment.gateway_txn_id,
			reference=payment.reference,
		)


_gateways = {}


def get_gateway(name: str) -> PaymentGateway:
	if name not in _gateways:
		entry = settings.PAYMENT_GATEWAYS.get(name)
		if entry is None:
			raise DepositRejected(f"unknown gateway {name!r}", user_message="Unsupported payment method.")
		try:
			cls = import_string(entry["backend"])
		except ImportError as e:
			raise ImproperlyConfigured(f"PAYMENT_GATEWAYS[{name!r}] backend cannot be imported") from e
		_gateways[name] = cls(name, **entry.get("options", {}))
	return _gateways[name]


def reset_gateways() -> None:
	_gateways.clear()
