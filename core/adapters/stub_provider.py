"""Adapter over the local vendor stub.

In production a provider is reached over HTTP (see http_provider). Here we call
the stub's ORM-backed vendor directly for repeatable, deterministic tests; the
scripted item behaviors surface as the same exceptions and results a real
vendor would produce.
"""

from decimal import Decimal

from vendor_stub import vendor as stub_vendor
from vendor_stub.models import VendorAccount

from core.errors import ProviderTimeout, ProviderUnavailable
from .base import (
	ERROR_NO_INVENTORY, BalanceResult, CatalogItem, FulfillResult, PriceQuote, Provider, StatusResult,
)


class StubProvider(Provider):

	def __init__(self, descriptor, *, vendor: str | None = None, status_map: str | None = None, **options):
		super().__init__(descriptor, status_map=status_map, **options)
		self.vendor = vendor or descriptor.identifier

	def _online(self):
		try:
			stub_vendor.ensure_online(self.vendor)
		except stub_vendor.VendorOffline as e:
			raise ProviderUnavailable(f"{self.identifier} is offline") from e

	def get_balance(self) -> BalanceResult:
		acct = VendorAccount.objects.filter(vendor=self.vendor).first()
		if acct is None or not acct.online:
			return BalanceResult(success=False, error_message="balance unavailable")
		return BalanceResult(success=True, balance=acct.balance, currency=acct.currency)

	def get_catalog(self, region: str, filters: dict | None = None) -> list[CatalogItem]:
		self._online()
		filters = filters or {}
		seen = {}
		for item in stub_vendor.items_for(self.vendor, region, filters.get("code", "")):
			if item.stock <= 0 or item.code in seen:
				continue
			seen[item.code] = CatalogItem(
				code=item.code,
				display_name=item.display_name or item.code,
				cost=item.cost,
				cost_currency=item.currency,
				available=item.stock,
			)
		return list(seen.values())

	def quote_price(self, region: str, item_code: str) -> list[PriceQuote]:
		self._online()
		return [
			PriceQuote(
				operator=item.operator,
				cost=item.cost,
				currency=item.currency,
				available_count=item.stock,
				eta_seconds=item.eta_seconds,
			)
			for item in stub_vendor.items_for(self.vendor, region, item_code)
			if item.stock > 0
		]

	def fulfill(self, region: str, operator: str, item_code: str, account_id) -> FulfillResult:
		try:
			order, error = stub_vendor.place_order(self.vendor, region, operator, item_code, account_id)
		except stub_vendor.VendorHang as e:
			raise ProviderTimeout(f"{self.identifier} did not answer the order call") from e
		except stub_vendor.VendorOffline as e:
			raise ProviderUnavailable(f"{self.identifier} refused the order call") from e

		if order is None:
			if error == ERROR_NO_INVENTORY:
				return FulfillResult.failure("Out of stock", ERROR_NO_INVENTORY)
			return FulfillResult.failure(f"Vendor rejected the order ({error})", error)

		return FulfillResult(
			success=True,
			provider_order_id=order.order_id,
			status=order.native_status,
			delivered_payload=order.payload or {},
			expires_at=order.expires_at,
		)

	def check_status(self, provider_order_id: str, account_id) -> StatusResult:
		self._online()
		order = stub_vendor.get_order(self.vendor, provider_order_id)
		if order is None:
			return StatusResult(success=False, error_message="Order not found")
		return StatusResult(
			success=True,
			mapped_status=self.map_status(order.native_status),
			native_status=order.native_status,
			delivered_payload=order.payload or {},
			undelivered_ratio=Decimal(order.undelivered_ratio),
		)

	def _action(self, provider_order_id: str, action: str) -> bool:
		try:
			return stub_vendor.apply_action(self.vendor, provider_order_id, action)
		except stub_vendor.VendorOffline as e:
			raise ProviderUnavailable(f"{self.identifier} refused the {action} call") from e

	def cancel(self, provider_order_id: str, account_id) -> bool:
		return self._action(provider_order_id, "cancel")

	def finish(self, provider_order_id: str, account_id) -> bool:
		return self._action(provider_order_id, "finish")

	def report_bad(self, provider_order_id: str, account_id) -> bool:
		return self._action(provider_order_id, "report")
