"""Versioned configuration snapshot.

settings.FULFILLMENT_DEFAULTS is the baseline; Setting rows override it using
dotted keys ("pricing.esim.markup_percentage", "exchange_rates.USD",
"provider_enabled.sms-alpha", "max_open_orders", ...).

Callers take one snapshot per operation and pass it down explicitly, so a
purchase is priced and routed against a single consistent version even if an
admin edits settings mid-flight. Writes bump "config.version" and drop the
cached snapshot.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError, transaction

from .models import Setting
from .pricing import PricingPolicy

logger = logging.getLogger(__name__)

CONFIG_CACHE_KEY = "core:config:snapshot"
VERSION_KEY = "config.version"


@dataclass(frozen=True)
class ConfigSnapshot:
	version: int
	pricing: dict = field(default_factory=dict)
	exchange_rates: dict = field(default_factory=dict)
	provider_enabled: dict = field(default_factory=dict)
	min_purchase: dict = field(default_factory=dict)
	max_open_orders: int = 5
	order_ttl_minutes: int = 20
	referral_signup_bonus: Decimal = Decimal("0")
	referral_commission_rate: Decimal = Decimal("10")
	referral_commission_rate_after: Decimal = Decimal("0")
	referral_commission_purchases: int = 3
	min_deposit: Decimal = Decimal("0")
	max_deposit: Decimal = Decimal("1000000")

	def pricing_policy(self, kind: str, cost_currency: str) -> PricingPolicy | None:
		"""
		Policy for a product kind priced from a provider's cost currency.
		Returns a policy with exchange_rate=None when the rate is unknown; the pricing
		engine treats that as fail-closed.
		"""
		entry = self.pricing.get(kind)
		if entry is None:
			return None
		rate = self.exchange_rates.get(cost_currency)
		return PricingPolicy(
			markup_percentage=Decimal(entry["markup_percentage"]),
			min_price=Decimal(entry["min_price"]),
			platform_fee=Decimal(entry.get("platform_fee", "0")),
			exchange_rate=Decimal(rate) if rate is not None else None,
		)

	def is_provider_enabled(self, identifier: str) -> bool:
		return bool(self.provider_enabled.get(identifier, True))

	def min_purchase_for(self, kind: str) -> Decimal:
		return Decimal(self.min_purchase.get(kind, "0"))


def _cast(value: str, value_type: str):
	if value_type == "int":
		return int(value)
	if value_type == "decimal":
		return str(Decimal(value))
	if value_type == "bool":
		return value.strip().lower() in ("1", "true", "yes", "on")
	if value_type == "json":
		return json.loads(value)
	return value


def _apply(tree: dict, dotted_key: str, value) -> None:
	parts = dotted_key.split(".")
	node = tree
	for part in parts[:-1]:
		node = node.setdefault(part, {})
	node[parts[-1]] = value


def _snapshot_from(raw: dict, version: int) -> ConfigSnapshot:
	return ConfigSnapshot(
		version=version,
		pricing=raw.get("pricing", {}),
		exchange_rates=raw.get("exchange_rates", {}),
		provider_enabled=raw.get("provider_enabled", {}),
		min_purchase=raw.get("min_purchase", {}),
		max_open_orders=int(raw.get("max_open_orders", 5)),
		order_ttl_minutes=int(raw.get("order_ttl_minutes", 20)),
		referral_signup_bonus=Decimal(str(raw.get("referral_signup_bonus", "0"))),
		referral_commission_rate=Decimal(str(raw.get("referral_commission_rate", "10"))),
		referral_commission_rate_after=Decimal(str(raw.get("referral_commission_rate_after", "0"))),
		referral_commission_purchases=int(raw.get("referral_commission_purchases", 3)),
		min_deposit=Decimal(str(raw.get("min_deposit", "0"))),
		max_deposit=Decimal(str(raw.get("max_deposit", "1000000"))),
	)


def default_config() -> ConfigSnapshot:
	return _snapshot_from(copy.deepcopy(settings.FULFILLMENT_DEFAULTS), version=0)


def build_config() -> ConfigSnapshot:
	raw = copy.deepcopy(settings.FULFILLMENT_DEFAULTS)
	version = 0
	for row in Setting.objects.all().order_by("key"):
		if row.key == VERSION_KEY:
			version = int(row.value)
			continue
		_apply(raw, row.key, _cast(row.value, row.value_type))
	return _snapshot_from(raw, version)


def current_config() -> ConfigSnapshot:
	snapshot = cache.get(CONFIG_CACHE_KEY)
	if snapshot is not None:
		return snapshot
	try:
		snapshot = build_config()
	except (DatabaseError, ValueError, TypeError, KeyError):
		# Bad row or DB hiccup: price from the baseline rather than fail the purchase
		logger.exception("Config snapshot build failed, using defaults")
		return default_config()
	cache.set(CONFIG_CACHE_KEY, snapshot, settings.CONFIG_CACHE_TTL)
	return snapshot


def invalidate_config() -> None:
	cache.delete(CONFIG_CACHE_KEY)


@transaction.atomic
def set_setting(key: str, value, value_type: str = "str") -> int:
	"""
	Persist one override and bump the config version. Returns the new version.
	"""
	if key == VERSION_KEY:
		raise ValueError("config.version is managed internally")
	if value_type == "json" and not isinstance(value, str):
		value = json.dumps(value)
	Setting.objects.update_or_create(key=key, defaults={"value": str(value), "value_type": value_type})

	version_row, _ = Setting.objects.select_for_update().get_or_create(
		key=VERSION_KEY, defaults={"value": "0", "value_type": "int"}
	)
	new_version = int(version_row.value) + 1
	version_row.value = str(new_version)
	version_row.save(update_fields=["value", "updated_at"])

	invalidate_config()
	# a concurrent reader may have cached the old snapshot before commit
	transaction.on_commit(invalidate_config)
	logger.info("Setting updated", extra={"key": key, "config_version": new_version})
	return new_version
