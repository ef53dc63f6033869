"""Closed set of configured providers, selection, and catalog/quote caching.

The registry is built once from settings.FULFILLMENT_PROVIDERS and rebuilt only
when that setting changes (tests use override_settings). Enable flags come from
the caller's ConfigSnapshot, not from the registry, so an admin toggle takes
effect on the next snapshot without a rebuild.

Caching: a fresh copy lives for CATALOG_CACHE_TTL / QUOTE_CACHE_TTL and a copy
of the last non-empty answer for STALE_CACHE_TTL. An empty or failed fetch
never replaces a good copy; the stale copy is served with warning=True.
"""

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.core.cache import cache
from django.core.exceptions import ImproperlyConfigured
from django.core.signals import setting_changed
from django.dispatch import receiver
from django.utils.module_loading import import_string

from core import pricing
from core.constants import to_money
from core.errors import InventoryExhausted, ProviderTimeout, ProviderUnavailable, UnknownProvider
from core.models import ProductKind
from .base import PriceQuote, Provider, ProviderDescriptor
from .payment_gateway import reset_gateways

logger = logging.getLogger(__name__)

STRATEGIES = ("cheapest", "fastest", "explicit")
STALE_PREFIX = "stale:"


@dataclass(frozen=True)
class Selection:
	provider: Provider
	quote: PriceQuote
	breakdown: pricing.PriceBreakdown

	@property
	def price(self):
		return self.breakdown.price


@dataclass(frozen=True)
class CatalogResult:
	items: list = field(default_factory=list)
	warning: bool = False
	source: str = "live"  # live | cache | stale | fallback


def _build_provider(entry: dict) -> Provider:
	missing = {"identifier", "kind", "backend"} - set(entry)
	if missing:
		raise ImproperlyConfigured(f"FULFILLMENT_PROVIDERS entry missing {sorted(missing)}: {entry!r}")
	if entry["kind"] not in ProductKind.values:
		raise ImproperlyConfigured(f"Provider {entry['identifier']!r} has unknown kind {entry['kind']!r}")
	try:
		backend = import_string(entry["backend"])
	except ImportError as e:
		raise ImproperlyConfigured(f"Provider {entry['identifier']!r} backend cannot be imported") from e
	if not (isinstance(backend, type) and issubclass(backend, Provider)):
		raise ImproperlyConfigured(f"{entry['backend']} is not a Provider")

	descriptor = ProviderDescriptor(
		identifier=entry["identifier"],
		display_name=entry.get("display_name", entry["identifier"]),
		kind=entry["kind"],
		enabled=entry.get("enabled", True),
		cost_currency=entry.get("cost_currency", "USD"),
		priority=int(entry.get("priority", 100)),
	)
	return backend(descriptor, **entry.get("options", {}))


class ProviderRegistry:

	def __init__(self, entries):
		self._providers: dict[str, Provider] = {}
		for entry in entries:
			provider = _build_provider(entry)
			if provider.identifier in self._providers:
				raise ImproperlyConfigured(f"Duplicate provider identifier {provider.identifier!r}")
			self._providers[provider.identifier] = provider

	@classmethod
	def from_settings(cls) -> "ProviderRegistry":
		return cls(settings.FULFILLMENT_PROVIDERS)

	def __iter__(self):
		return iter(self._providers.values())

	def get(self, identifier: str) -> Provider:
		try:
			return self._providers[identifier]
		except KeyError:
			raise UnknownProvider(f"no provider {identifier!r}") from None

	def is_enabled(self, provider: Provider, config) -> bool:
		return provider.descriptor.enabled and config.is_provider_enabled(provider.identifier)

	def enabled_providers(self, kind: str, config) -> list[Provider]:
		found = [p for p in self._providers.values() if p.kind == kind and self.is_enabled(p, config)]
		return sorted(found, key=lambda p: (p.descriptor.priority, p.identifier))

	def for_order(self, order) -> Provider:
		"""
		The provider that served this order. Disabled providers still resolve so open
		orders can be checked, cancelled and finished.
		"""
		return self.get(order.provider_identifier)

	# --- Cached reads ---------------------------------------------------------

	def _cached_fetch(self, key: str, ttl: int, fetch, refresh: bool = False):
		"""
		Returns (value, source). Raises the fetch error only when no good copy exists.
		"""
		if not refresh:
			hit = cache.get(key)
			if hit:
				return hit, "cache"

		stale_key = STALE_PREFIX + key
		try:
			value = fetch()
		except (ProviderUnavailable, ProviderTimeout):
			stale = cache.get(stale_key)
			if stale:
				logger.warning("Upstream fetch failed, serving last good copy", extra={"cache_key": key})
				return stale, "stale"
			raise

		if value:
			cache.set(key, value, ttl)
			cache.set(stale_key, value, settings.STALE_CACHE_TTL)
			return value, "live"

		stale = cache.get(stale_key)
		if stale:
			logger.warning("Upstream returned nothing, serving last good copy", extra={"cache_key": key})
			return stale, "stale"
		return value, "live"

	def quotes(self, provider: Provider, region: str, item_code: str, refresh: bool = False):
		return self._cached_fetch(
			f"quote:{provider.identifier}:{region}:{item_code}",
			settings.QUOTE_CACHE_TTL,
			lambda: provider.quote_price(region, item_code),
			refresh,
		)

	def catalog(self, kind: str, region: str, config, refresh: bool = False) -> CatalogResult:
		"""
		Merged catalog across enabled providers, one row per item code at its lowest retail price.
		"""
		merged = {}
		warning = False
		sources = set()
		for provider in self.enabled_providers(kind, config):
			try:
				items, source = self._cached_fetch(
					f"catalog:{provider.identifier}:{region}",
					settings.CATALOG_CACHE_TTL,
					lambda p=provider: p.get_catalog(region),
					refresh,
				)
			except (ProviderUnavailable, ProviderTimeout):
				logger.warning("Catalog unavailable", extra={"provider": provider.identifier, "region": region})
				warning = True
				continue
			sources.add(source)
			warning = warning or source == "stale"
			for item in items:
				retail = pricing.price(item.cost, config.pricing_policy(kind, item.cost_currency))
				row = {**item.as_dict(), "price": str(retail), "provider": provider.identifier}
				current = merged.get(item.code)
				if current is None or retail < to_money(current["price"]):
					merged[item.code] = row

		if merged:
			source = "stale" if "stale" in sources else ("cache" if sources == {"cache"} else "live")
			return CatalogResult(items=list(merged.values()), warning=warning, source=source)

		fallback = [dict(row) for row in settings.CATALOG_FALLBACK.get(kind, [])]
		logger.warning("Catalog empty, serving static fallback", extra={"kind": kind, "region": region})
		return CatalogResult(items=fallback, warning=True, source="fallback")

	# --- Selection ------------------------------------------------------------

	def select_best(self, kind: str, region: str, item_code: str, strategy: str, config, provider_id: str | None = None) -> Selection:
		if strategy not in STRATEGIES:
			raise ValueError(f"Unknown strategy {strategy!r}")

		if strategy == "explicit" or provider_id:
			if not provider_id:
				raise UnknownProvider("explicit strategy requires a provider id")
			provider = self.get(provider_id)
			if provider.kind != kind or not self.is_enabled(provider, config):
				raise UnknownProvider(f"{provider_id!r} does not serve {kind} right now")
			candidates = [provider]
		else:
			candidates = self.enabled_providers(kind, config)
			if not candidates:
				raise ProviderUnavailable(f"no enabled provider for {kind}")

		options = []
		failed = 0
		for provider in candidates:
			try:
				quotes, _ = self.quotes(provider, region, item_code)
			except (ProviderUnavailable, ProviderTimeout) as exc:
				logger.warning("Quote failed", extra={"provider": provider.identifier, "error": str(exc)})
				failed += 1
				continue
			for q in quotes:
				if q.available_count <= 0:
					continue
				policy = config.pricing_policy(kind, q.currency or provider.cost_currency)
				options.append(Selection(provider, q, pricing.quote(q.cost, policy)))

		if not options:
			if failed == len(candidates):
				raise ProviderUnavailable(f"every {kind} provider failed to quote {region}/{item_code}")
			raise InventoryExhausted(f"no stock for {kind} {region}/{item_code}")

		if strategy == "fastest":
			def rank(s):
				eta = s.quote.eta_seconds
				return (eta is None, eta or 0, s.price, s.provider.descriptor.priority, s.provider.identifier)
		else:
			def rank(s):
				return (s.price, s.provider.descriptor.priority, s.provider.identifier)
		return min(options, key=rank)

	def provider_balances(self) -> list[dict]:
		"""
		Upstream prepaid balances for operators. Never raises.
		"""
		rows = []
		for provider in sorted(self._providers.values(), key=lambda p: (p.kind, p.identifier)):
			row = {"identifier": provider.identifier, "kind": provider.kind, "success": False}
			try:
				result = provider.get_balance()
				row.update(success=result.success, balance=str(result.balance), currency=result.currency, error=result.error_message)
			except Exception:
				logger.exception("Provider balance lookup failed", extra={"provider": provider.identifier})
				row["error"] = "lookup failed"
			rows.append(row)
		return rows


_registry: ProviderRegistry | None = None


def get_registry() -> ProviderRegistry:
	global _registry
	if _registry is None:
		_registry = ProviderRegistry.from_settings()
	return _registry


@receiver(setting_changed)
def _reset_on_setting_change(sender, setting, **kwargs):
	global _registry
	if setting == "FULFILLMENT_PROVIDERS":
		_registry = None
	elif setting == "PAYMENT_GATEWAYS":
		reset_gateways()
