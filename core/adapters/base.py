"""Provider contract shared by every upstream fulfiller.

A Provider wraps one upstream vendor for one product kind. Concrete adapters
translate the vendor's wire format into the result dataclasses below; nothing
outside core.adapters sees vendor payloads.

Adapters raise ProviderTimeout when the outcome of a call is unknown and
ProviderUnavailable when the vendor could not be reached or refused the call.
A definite business failure (no stock, bad item) is returned as
FulfillResult(success=False) instead.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from core.models import OrderStatus, ProductKind

ERROR_NO_INVENTORY = "no_inventory"


@dataclass(frozen=True)
class ProviderDescriptor:
	identifier: str
	display_name: str
	kind: str
	enabled: bool = True
	cost_currency: str = "USD"
	priority: int = 100


@dataclass(frozen=True)
class BalanceResult:
	success: bool
	balance: Decimal = Decimal("0")
	currency: str = ""
	error_message: str = ""


@dataclass(frozen=True)
class CatalogItem:
	code: str
	display_name: str
	cost: Decimal
	cost_currency: str
	available: int = 0

	def as_dict(self) -> dict:
		return {
			"code": self.code,
			"display_name": self.display_name,
			"cost": str(self.cost),
			"cost_currency": self.cost_currency,
			"available": self.available,
		}


@dataclass(frozen=True)
class PriceQuote:
	operator: str
	cost: Decimal
	currency: str
	available_count: int = 0
	eta_seconds: int | None = None


@dataclass(frozen=True)
class FulfillResult:
	success: bool
	provider_order_id: str = ""
	status: str = ""
	delivered_payload: dict = field(default_factory=dict)
	error_message: str = ""
	error_code: str = ""
	expires_at: datetime | None = None

	@classmethod
	def failure(cls, message: str, code: str = "") -> "FulfillResult":
		return cls(success=False, error_message=message, error_code=code)


@dataclass(frozen=True)
class StatusResult:
	success: bool
	mapped_status: str | None = None
	native_status: str = ""
	delivered_payload: dict = field(default_factory=dict)
	error_message: str = ""
	# share of the order the vendor could not deliver (SMM "partial"), 0..1
	undelivered_ratio: Decimal = Decimal("0")


# Native vendor status -> internal order state, per vendor family.
STATUS_MAPS = {
	# SMS activation vendors: RECEIVED means a code arrived but the activation is still open
	"phone_number": {
		"PENDING": OrderStatus.PROCESSING,
		"RECEIVED": OrderStatus.PROCESSING,
		"CANCELED": OrderStatus.CANCELLED,
		"TIMEOUT": OrderStatus.EXPIRED,
		"FINISHED": OrderStatus.COMPLETED,
		"BANNED": OrderStatus.REFUNDED,
	},
	"esim": {
		"PENDING": OrderStatus.PENDING,
		"ACCEPTED": OrderStatus.PENDING,
		"AUTHORIZED": OrderStatus.PENDING,
		"IN_PROGRESS": OrderStatus.PROCESSING,
		"DONE": OrderStatus.COMPLETED,
		"FAILED": OrderStatus.FAILED,
		"CANCELLED": OrderStatus.CANCELLED,
	},
	"smm": {
		"PENDING": OrderStatus.PROCESSING,
		"IN PROGRESS": OrderStatus.PROCESSING,
		"PROCESSING": OrderStatus.PROCESSING,
		"COMPLETED": OrderStatus.COMPLETED,
		"PARTIAL": OrderStatus.COMPLETED,
		"CANCELED": OrderStatus.CANCELLED,
		"CANCELLED": OrderStatus.CANCELLED,
	},
	"voucher": {
		"PENDING": OrderStatus.PENDING,
		"ACCEPTED": OrderStatus.PROCESSING,
		"DONE": OrderStatus.COMPLETED,
		"FAILED": OrderStatus.FAILED,
		"CANCELLED": OrderStatus.CANCELLED,
	},
}


class Provider(ABC):
	"""
	One upstream vendor serving one ProductKind.
	"""
	default_status = OrderStatus.PROCESSING

	def __init__(self, descriptor: ProviderDescriptor, *, status_map: str | None = None, **options):
		if descriptor.kind not in ProductKind.values:
			raise ValueError(f"Unknown product kind {descriptor.kind!r}")
		self.descriptor = descriptor
		self.status_map = STATUS_MAPS[status_map or descriptor.kind]
		self.options = options

	@property
	def identifier(self) -> str:
		return self.descriptor.identifier

	@property
	def kind(self) -> str:
		return self.descriptor.kind

	@property
	def cost_currency(self) -> str:
		return self.descriptor.cost_currency

	def map_status(self, native_status: str) -> str:
		return self.status_map.get((native_status or "").strip().upper(), self.default_status)

	@abstractmethod
	def get_balance(self) -> BalanceResult: ...

	@abstractmethod
	def get_catalog(self, region: str, filters: dict | None = None) -> list[CatalogItem]: ...

	@abstractmethod
	def quote_price(self, region: str, item_code: str) -> list[PriceQuote]: ...

	@abstractmethod
	def fulfill(self, region: str, operator: str, item_code: str, account_id) -> FulfillResult: ...

	@abstractmethod
	def check_status(self, provider_order_id: str, account_id) -> StatusResult: ...

	@abstractmethod
	def cancel(self, provider_order_id: str, account_id) -> bool: ...

	@abstractmethod
	def finish(self, provider_order_id: str, account_id) -> bool: ...

	@abstractmethod
	def report_bad(self, provider_order_id: str, account_id) -> bool: ...

	def __repr__(self):
		return f"<{type(self).__name__} {self.identifier} ({self.kind})>"
