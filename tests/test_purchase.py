import dataclasses
from decimal import Decimal

import pytest

from core import ledger
from core.errors import (
	BelowMinimumPurchase, InsufficientFunds, InventoryExhausted, ProviderUnavailable, PurchaseLimitExceeded,
)
from core.models import Account, Order, OrderStatus, Transaction, TransactionKind, TransactionStatus
from core.services import FulfillmentService

pytestmark = pytest.mark.django_db

NUMBER = {"number": "+2348000000001"}


def balance_of(account):
	account.refresh_from_db()
	return account.balance


def test_successful_purchase_then_failed_one(service, make_account, make_item):
	account = make_account(balance="1000")
	make_item(code="whatsapp", cost="700", deliverable=NUMBER)
	make_item(code="telegram", cost="200", behavior="fail")

	order = service.purchase(account, "phone_number", "nigeria", "whatsapp")
	assert order.status == OrderStatus.PROCESSING
	assert order.amount_charged == Decimal("700.00")
	assert order.delivered_payload == NUMBER
	assert order.provider_reference.startswith("VO-")
	assert order.debit_transaction.status == TransactionStatus.COMPLETED
	assert balance_of(account) == Decimal("300.00")

	with pytest.raises(ProviderUnavailable) as exc:
		service.purchase(account, "phone_number", "nigeria", "telegram")

	failed = exc.value.order
	assert failed.status == OrderStatus.FAILED
	assert failed.failure_reason
	assert balance_of(account) == Decimal("300.00")
	refund = Transaction.objects.get(reference=failed.refund_reference)
	assert refund.kind == TransactionKind.REFUND
	assert refund.status == TransactionStatus.COMPLETED
	assert refund.amount == Decimal("200.00")
	assert Transaction.objects.get(pk=failed.debit_transaction_id).status == TransactionStatus.FAILED
	assert ledger.reconstruct_balance(account) == Decimal("300.00")


def test_racing_purchases_cannot_overdraw(service, make_account, make_item):
	account = make_account(balance="1000")
	stale_copy = Account.objects.get(pk=account.pk)
	make_item(cost="600")

	service.purchase(account, "phone_number", "nigeria", "whatsapp")
	with pytest.raises(InsufficientFunds):
		service.purchase(stale_copy, "phone_number", "nigeria", "whatsapp")

	assert balance_of(account) == Decimal("400.00")
	assert Order.objects.filter(account=account).count() == 1
	assert ledger.reconstruct_balance(account) == Decimal("400.00")


def test_timeout_leaves_order_for_reconciliation(service, make_account, make_item):
	account = make_account(balance="1000")
	make_item(cost="700", behavior="timeout")

	order = service.purchase(account, "phone_number", "nigeria", "whatsapp")

	assert order.status == OrderStatus.PROCESSING
	assert order.expires_at is not None
	assert order.provider_reference == ""
	assert order.refund_transaction_id is None
	assert Transaction.objects.get(pk=order.debit_transaction_id).status == TransactionStatus.PENDING
	assert balance_of(account) == Decimal("300.00")


def test_refused_connection_is_refunded(service, make_account, make_item):
	account = make_account(balance="1000")
	make_item(cost="700", behavior="unavailable")

	with pytest.raises(ProviderUnavailable) as exc:
		service.purchase(account, "phone_number", "nigeria", "whatsapp")
	assert exc.value.order.status == OrderStatus.FAILED
	assert balance_of(account) == Decimal("1000.00")


def test_sold_out_at_order_time_is_refunded(service, make_account, make_item):
	account = make_account(balance="1000")
	make_item(cost="700", behavior="no_inventory")

	with pytest.raises(InventoryExhausted) as exc:
		service.purchase(account, "phone_number", "nigeria", "whatsapp")
	assert exc.value.order.status == OrderStatus.FAILED
	assert balance_of(account) == Decimal("1000.00")


def test_immediately_completed_order(service, make_account, make_item):
	account = make_account(balance="1000")
	make_item(cost="250", initial_status="FINISHED", deliverable=NUMBER)

	order = service.purchase(account, "phone_number", "nigeria", "whatsapp")
	assert order.status == OrderStatus.COMPLETED
	assert order.debit_transaction.status == TransactionStatus.COMPLETED
	assert balance_of(account) == Decimal("750.00")


def test_vendor_closing_on_arrival_refunds(service, make_account, make_item):
	account = make_account(balance="1000")
	make_item(cost="250", initial_status="CANCELED")

	order = service.purchase(account, "phone_number", "nigeria", "whatsapp")
	assert order.status == OrderStatus.CANCELLED
	assert Transaction.objects.get(pk=order.debit_transaction_id).status == TransactionStatus.CANCELLED
	assert balance_of(account) == Decimal("1000.00")


def test_debit_records_how_it_was_priced(service, make_account, make_item):
	account = make_account(balance="1000")
	make_item(cost="300", operator="mtn")

	order = service.purchase(account, "phone_number", "nigeria", "whatsapp")
	meta = order.debit_transaction.metadata
	assert meta["provider"] == "sms-alpha"
	assert meta["operator"] == "mtn"
	assert Decimal(meta["cost"]) == Decimal("300")
	assert meta["config_version"] == 1
	assert meta["pricing_fallback"] is False
	assert order.operator == "mtn"


def test_default_pricing_marks_up_cost(make_account, make_item):
	account = make_account(balance="10000")
	make_item(cost="0.5")

	order = FulfillmentService().purchase(account, "phone_number", "nigeria", "whatsapp")
	# 0.5 USD * 1600 * 1000 %
	assert order.amount_charged == Decimal("8000.00")
	assert balance_of(account) == Decimal("2000.00")


def test_open_order_limit(flat_config, make_account, make_item):
	service = FulfillmentService(config=dataclasses.replace(flat_config, max_open_orders=1))
	account = make_account(balance="1000")
	make_item(cost="100")

	service.purchase(account, "phone_number", "nigeria", "whatsapp")
	with pytest.raises(PurchaseLimitExceeded):
		service.purchase(account, "phone_number", "nigeria", "whatsapp")
	assert balance_of(account) == Decimal("900.00")


def test_minimum_purchase_per_kind(flat_config, make_account, make_item):
	service = FulfillmentService(config=dataclasses.replace(flat_config, min_purchase={"esim": "1000"}))
	account = make_account(balance="5000")
	make_item(vendor="esim-one", family="esim", region="turkey", code="5gb-30d", cost="900")

	with pytest.raises(BelowMinimumPurchase):
		service.purchase(account, "esim", "turkey", "5gb-30d")
	assert balance_of(account) == Decimal("5000.00")
	assert not Order.objects.exists()


def test_esim_order_starts_pending_at_vendor(service, make_account, make_item):
	account = make_account(balance="5000")
	make_item(vendor="esim-one", family="esim", region="turkey", code="5gb-30d", cost="1200", initial_status="ACCEPTED")

	order = service.purchase(account, "esim", "turkey", "5gb-30d")
	assert order.status == OrderStatus.PENDING
	assert Order.objects.get(pk=order.pk).status == OrderStatus.PENDING
	assert order.native_status == "ACCEPTED"
	assert order.debit_transaction.status == TransactionStatus.COMPLETED


def test_insufficient_balance_creates_nothing(service, make_account, make_item):
	account = make_account(balance="100")
	make_item(cost="700")

	with pytest.raises(InsufficientFunds):
		service.purchase(account, "phone_number", "nigeria", "whatsapp")
	assert not Order.objects.exists()
	assert Transaction.objects.filter(account=account).count() == 1


def test_unknown_kind(service, make_account):
	with pytest.raises(ValueError):
		service.purchase(make_account(), "gift_card", "nigeria", "whatsapp")


def test_provider_io_refused_inside_transaction(service, make_account, make_item, settings):
	settings.STRICT_IO_GUARD = True
	account = make_account(balance="1000")
	make_item(cost="100")

	# the test itself runs inside a transaction
	with pytest.raises(RuntimeError):
		service.purchase(account, "phone_number", "nigeria", "whatsapp")
	assert balance_of(account) == Decimal("1000.00")
