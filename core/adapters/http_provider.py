"""Generic JSON-over-HTTP provider.

Speaks the wire format served by vendor_stub.views:

    GET  {base}/balance                       -> {balance, currency}
    GET  {base}/catalog?region=               -> {items: [{code, display_name, cost, currency, available}]}
    GET  {base}/quote?region=&item=           -> {quotes: [{operator, cost, currency, available, eta_seconds}]}
    POST {base}/orders                        -> 201 {order_id, status, payload, expires_at}
    GET  {base}/orders/<id>                   -> {order_id, status, payload, undelivered_ratio}
    POST {base}/orders/<id>/<action>          -> {ok}

Reads are retried on connection errors. The order call is never retried: a read
timeout or a 504 after the request went out means the vendor may have acted,
so it surfaces as ProviderTimeout.
"""

import logging
from decimal import Decimal, InvalidOperation

import requests
from django.utils.dateparse import parse_datetime
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.errors import ProviderTimeout, ProviderUnavailable
from .base import (
	ERROR_NO_INVENTORY, BalanceResult, CatalogItem, FulfillResult, PriceQuote, Provider, StatusResult,
)

logger = logging.getLogger(__name__)


def _decimal(value, default="0") -> Decimal:
	try:
		return Decimal(str(value if value is not None else default))
	except InvalidOperation:
		return Decimal(default)


class HttpProvider(Provider):

	def __init__(self, descriptor, *, base_url: str, api_key: str = "", connect_timeout: float = 5,
				 read_timeout: float = 15, status_map: str | None = None, **options):
		super().__init__(descriptor, status_map=status_map, **options)
		self.base_url = base_url.rstrip("/")
		self.timeout = (connect_timeout, read_timeout)
		self.session = requests.Session()
		if api_key:
			self.session.headers["Authorization"] = f"Bearer {api_key}"
		self.session.headers["Accept"] = "application/json"

	@retry(
		stop=stop_after_attempt(3),
		wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
		retry=retry_if_exception_type(requests.ConnectionError),
		reraise=True,
	)
	def _get(self, path: str, params: dict | None = None) -> requests.Response:
		return self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)

	def _read(self, path: str, params: dict | None = None) -> dict:
		try:
			resp = self._get(path, params)
		except requests.ConnectTimeout as e:
			raise ProviderUnavailable(f"{self.identifier} GET {path} could not connect") from e
		except requests.Timeout as e:
			raise ProviderTimeout(f"{self.identifier} GET {path} timed out") from e
		except requests.RequestException as e:
			raise ProviderUnavailable(f"{self.identifier} GET {path} failed: {e}") from e
		if resp.status_code == 504:
			raise ProviderTimeout(f"{self.identifier} GET {path} returned 504")
		if resp.status_code >= 500:
			raise ProviderUnavailable(f"{self.identifier} GET {path} returned {resp.status_code}")
		try:
			return resp.json()
		except ValueError as e:
			raise ProviderUnavailable(f"{self.identifier} GET {path} returned invalid JSON") from e

	def _post(self, path: str, body: dict | None = None) -> requests.Response:
		try:
			return self.session.post(f"{self.base_url}{path}", json=body or {}, timeout=self.timeout)
		except requests.ConnectTimeout as e:
			# never reached the vendor
			raise ProviderUnavailable(f"{self.identifier} POST {path} could not connect") from e
		except requests.Timeout as e:
			raise ProviderTimeout(f"{self.identifier} POST {path} timed out") from e
		except requests.RequestException as e:
			raise ProviderUnavailable(f"{self.identifier} POST {path} failed: {e}") from e

	def get_balance(self) -> BalanceResult:
		try:
			data = self._read("/balance")
		except (ProviderTimeout, ProviderUnavailable) as e:
			return BalanceResult(success=False, error_message=str(e))
		return BalanceResult(success=True, balance=_decimal(data.get("balance")), currency=data.get("currency", ""))

	def get_catalog(self, region: str, filters: dict | None = None) -> list[CatalogItem]:
		data = self._read("/catalog", {"region": region, **(filters or {})})
		return [
			CatalogItem(
				code=str(row["code"]),
				display_name=row.get("display_name") or str(row["code"]),
				cost=_decimal(row.get("cost")),
				cost_currency=row.get("currency") or self.cost_currency,
				available=int(row.get("available") or 0),
			)
			for row in data.get("items", [])
			if row.get("code")
		]

	def quote_price(self, region: str, item_code: str) -> list[PriceQuote]:
		data = self._read("/quote", {"region": region, "item": item_code})
		return [
			PriceQuote(
				operator=row.get("operator") or "any",
				cost=_decimal(row.get("cost")),
				currency=row.get("currency") or self.cost_currency,
				available_count=int(row.get("available") or 0),
				eta_seconds=row.get("eta_seconds"),
			)
			for row in data.get("quotes", [])
		]

	def fulfill(self, region: str, operator: str, item_code: str, account_id) -> FulfillResult:
		resp = self._post("/orders", {"region": region, "operator": operator, "item": item_code, "customer": str(account_id)})
		if resp.status_code == 504:
			raise ProviderTimeout(f"{self.identifier} order call returned 504")
		if resp.status_code >= 500:
			raise ProviderUnavailable(f"{self.identifier} order call returned {resp.status_code}")
		try:
			data = resp.json()
		except ValueError:
			if resp.ok:
				# the vendor accepted something we cannot read
				raise ProviderTimeout(f"{self.identifier} order call returned invalid JSON")
			data = {}
		if not resp.ok:
			code = data.get("error", "")
			if code == ERROR_NO_INVENTORY or resp.status_code == 409:
				return FulfillResult.failure(data.get("message") or "Out of stock", ERROR_NO_INVENTORY)
			return FulfillResult.failure(data.get("message") or f"HTTP {resp.status_code}", code)

		expires_at = parse_datetime(data["expires_at"]) if data.get("expires_at") else None
		return FulfillResult(
			success=True,
			provider_order_id=str(data.get("order_id", "")),
			status=data.get("status", ""),
			delivered_payload=data.get("payload") or {},
			expires_at=expires_at,
		)

	def check_status(self, provider_order_id: str, account_id) -> StatusResult:
		data = self._read(f"/orders/{provider_order_id}")
		if data.get("error"):
			return StatusResult(success=False, error_message=data.get("message") or data["error"])
		native = data.get("status", "")
		ratio = min(max(_decimal(data.get("undelivered_ratio")), Decimal("0")), Decimal("1"))
		return StatusResult(
			success=True,
			mapped_status=self.map_status(native),
			native_status=native,
			delivered_payload=data.get("payload") or {},
			undelivered_ratio=ratio,
		)

	def _action(self, provider_order_id: str, action: str) -> bool:
		resp = self._post(f"/orders/{provider_order_id}/{action}")
		if resp.status_code >= 500:
			raise ProviderUnavailable(f"{self.identifier} {action} returned {resp.status_code}")
		try:
			return bool(resp.ok and resp.json().get("ok"))
		except ValueError:
			logger.warning("Unreadable %s response", action, extra={"provider": self.identifier})
			return False

	def cancel(self, provider_order_id: str, account_id) -> bool:
		return self._action(provider_order_id, "cancel")

	def finish(self, provider_order_id: str, account_id) -> bool:
		return self._action(provider_order_id, "finish")

	def report_bad(self, provider_order_id: str, account_id) -> bool:
		return self._action(provider_order_id, "report")
