import dataclasses
from decimal import Decimal

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings

from core.adapters.registry import ProviderRegistry, get_registry
from core.errors import InventoryExhausted, ProviderUnavailable, UnknownProvider
from core.models import Order
from vendor_stub.models import VendorAccount, VendorItem

pytestmark = pytest.mark.django_db

STUB = "core.adapters.stub_provider.StubProvider"


@pytest.fixture
def registry():
	return ProviderRegistry.from_settings()


def test_cheapest_picks_lowest_retail_price(registry, make_item, flat_config):
	make_item(vendor="sms-alpha", cost="0.50")
	make_item(vendor="sms-bravo", cost="0.40")

	selection = registry.select_best("phone_number", "nigeria", "whatsapp", "cheapest", flat_config)
	assert selection.provider.identifier == "sms-bravo"
	assert selection.price == Decimal("0.40")


def test_price_tie_goes_to_priority(registry, make_item, flat_config):
	make_item(vendor="sms-bravo", cost="0.50")
	make_item(vendor="sms-alpha", cost="0.50")

	selection = registry.select_best("phone_number", "nigeria", "whatsapp", "cheapest", flat_config)
	assert selection.provider.identifier == "sms-alpha"


def test_fastest_prefers_known_low_eta(registry, make_item, flat_config):
	make_item(vendor="sms-alpha", cost="0.30")
	make_item(vendor="sms-bravo", cost="0.90", eta_seconds=60)

	selection = registry.select_best("phone_number", "nigeria", "whatsapp", "fastest", flat_config)
	assert selection.provider.identifier == "sms-bravo"


def test_explicit_provider(registry, make_item, flat_config):
	make_item(vendor="sms-alpha", cost="0.30")
	make_item(vendor="sms-bravo", cost="0.90")

	selection = registry.select_best("phone_number", "nigeria", "whatsapp", "explicit", flat_config, provider_id="sms-bravo")
	assert selection.provider.identifier == "sms-bravo"

	with pytest.raises(UnknownProvider):
		registry.select_best("phone_number", "nigeria", "whatsapp", "explicit", flat_config)
	with pytest.raises(UnknownProvider):
		registry.select_best("phone_number", "nigeria", "whatsapp", "explicit", flat_config, provider_id="esim-one")
	with pytest.raises(UnknownProvider):
		registry.select_best("phone_number", "nigeria", "whatsapp", "explicit", flat_config, provider_id="nope")


def test_unknown_strategy_rejected(registry, flat_config):
	with pytest.raises(ValueError):
		registry.select_best("phone_number", "nigeria", "whatsapp", "random", flat_config)


def test_disabled_provider_is_skipped_but_resolves_for_orders(registry, make_item, flat_config):
	make_item(vendor="sms-alpha", cost="0.10")
	make_item(vendor="sms-bravo", cost="0.90")
	config = dataclasses.replace(flat_config, provider_enabled={"sms-alpha": False})

	selection = registry.select_best("phone_number", "nigeria", "whatsapp", "cheapest", config)
	assert selection.provider.identifier == "sms-bravo"
	assert registry.for_order(Order(provider_identifier="sms-alpha")).identifier == "sms-alpha"


def test_no_stock_anywhere(registry, make_item, flat_config):
	make_item(vendor="sms-alpha", stock=0)
	with pytest.raises(InventoryExhausted):
		registry.select_best("phone_number", "nigeria", "whatsapp", "cheapest", flat_config)


def test_every_provider_down(registry, make_item, flat_config):
	make_item(vendor="sms-alpha")
	VendorAccount.objects.create(vendor="sms-alpha", online=False)
	VendorAccount.objects.create(vendor="sms-bravo", online=False)
	with pytest.raises(ProviderUnavailable):
		registry.select_best("phone_number", "nigeria", "whatsapp", "cheapest", flat_config)


def test_empty_catalog_never_overwrites_good_copy(registry, make_item, flat_config):
	item = make_item(vendor="sms-alpha", code="telegram", cost="0.25")

	first = registry.catalog("phone_number", "nigeria", flat_config, refresh=True)
	assert [row["code"] for row in first.items] == ["telegram"]
	assert first.warning is False

	VendorItem.objects.filter(pk=item.pk).update(stock=0)
	second = registry.catalog("phone_number", "nigeria", flat_config, refresh=True)
	assert [row["code"] for row in second.items] == ["telegram"]
	assert second.warning is True
	assert second.source == "stale"


def test_empty_quote_never_overwrites_good_copy(registry, make_item):
	item = make_item(vendor="sms-alpha", cost="0.25")
	provider = registry.get("sms-alpha")

	quotes, source = registry.quotes(provider, "nigeria", "whatsapp", refresh=True)
	assert source == "live" and quotes[0].cost == Decimal("0.25")

	VendorItem.objects.filter(pk=item.pk).update(stock=0)
	quotes, source = registry.quotes(provider, "nigeria", "whatsapp", refresh=True)
	assert source == "stale" and quotes[0].cost == Decimal("0.25")


def test_failed_catalog_serves_stale_copy(registry, make_item, flat_config):
	make_item(vendor="sms-alpha", code="telegram")
	registry.catalog("phone_number", "nigeria", flat_config, refresh=True)
	VendorAccount.objects.create(vendor="sms-alpha", online=False)

	result = registry.catalog("phone_number", "nigeria", flat_config, refresh=True)
	assert [row["code"] for row in result.items] == ["telegram"]
	assert result.warning is True


def test_catalog_falls_back_to_static_list(registry, flat_config, settings):
	result = registry.catalog("phone_number", "nowhere", flat_config)
	assert result.source == "fallback"
	assert result.warning is True
	assert result.items == settings.CATALOG_FALLBACK["phone_number"]


def test_catalog_merges_to_lowest_price(registry, make_item, flat_config):
	make_item(vendor="sms-alpha", code="telegram", cost="0.80")
	make_item(vendor="sms-bravo", code="telegram", cost="0.60")
	make_item(vendor="sms-bravo", code="signal", cost="0.70")

	result = registry.catalog("phone_number", "nigeria", flat_config)
	rows = {row["code"]: row for row in result.items}
	assert rows["telegram"]["provider"] == "sms-bravo"
	assert rows["telegram"]["price"] == "0.60"
	assert set(rows) == {"telegram", "signal"}


def test_duplicate_identifiers_rejected():
	entry = {"identifier": "x", "kind": "esim", "backend": STUB}
	with pytest.raises(ImproperlyConfigured):
		ProviderRegistry([entry, dict(entry)])


def test_unknown_kind_rejected():
	with pytest.raises(ImproperlyConfigured):
		ProviderRegistry([{"identifier": "x", "kind": "gift_card", "backend": STUB}])


def test_registry_rebuilds_when_providers_setting_changes():
	assert {p.identifier for p in get_registry()} >= {"sms-alpha", "esim-one"}
	with override_settings(FULFILLMENT_PROVIDERS=[{"identifier": "solo", "kind": "smm", "backend": STUB}]):
		assert [p.identifier for p in get_registry()] == ["solo"]
	assert "sms-alpha" in {p.identifier for p in get_registry()}


def test_provider_balances_never_raise(registry):
	VendorAccount.objects.create(vendor="sms-alpha", balance=Decimal("12.50"))
	VendorAccount.objects.create(vendor="sms-bravo", online=False)

	rows = {row["identifier"]: row for row in registry.provider_balances()}
	assert rows["sms-alpha"]["success"] is True
	assert rows["sms-alpha"]["balance"] == "12.50"
	assert rows["sms-bravo"]["success"] is False
	assert rows["esim-one"]["success"] is False


@pytest.mark.parametrize("kind", ["esim", "smm", "voucher"])
def test_every_kind_has_a_static_fallback(registry, flat_config, kind):
	result = registry.catalog(kind, "nowhere", flat_config)
	assert result.source == "fallback"
	assert result.items
	assert all(row["code"] and row["display_name"] for row in result.items)
