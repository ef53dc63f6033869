from decimal import Decimal

import pytest
from django.core.cache import cache

from core import ledger
from core.accounts import create_account
from core.config import ConfigSnapshot
from core.models import TransactionKind
from core.services import FulfillmentService
from vendor_stub.models import VendorItem

KINDS = ("phone_number", "esim", "smm", "voucher")


@pytest.fixture(autouse=True)
def _isolated(settings):
	# pytest-django wraps each test in a transaction, so the I/O guard would always fire
	settings.STRICT_IO_GUARD = False
	cache.clear()
	yield
	cache.clear()


@pytest.fixture
def flat_config():
	"""
	price == cost for every kind: markup 100 %, rate 1, no floor, no fee.
	"""
	return ConfigSnapshot(
		version=1,
		pricing={k: {"markup_percentage": "100", "min_price": "0", "platform_fee": "0"} for k in KINDS},
		exchange_rates={"USD": "1", "NGN": "1"},
		min_purchase={},
		max_open_orders=5,
		order_ttl_minutes=20,
		referral_signup_bonus=Decimal("500"),
		referral_commission_rate=Decimal("10"),
		referral_commission_rate_after=Decimal("0"),
		referral_commission_purchases=3,
		min_deposit=Decimal("1000"),
		max_deposit=Decimal("1000000"),
	)


@pytest.fixture
def service(flat_config):
	return FulfillmentService(config=flat_config)


@pytest.fixture
def make_account(db):
	counter = {"n": 0}

	def _make(balance="0", email=None, referral_code=None, config=None):
		counter["n"] += 1
		account = create_account(email or f"user{counter['n']}@example.com", referral_code=referral_code, config=config)
		if Decimal(str(balance)) > 0:
			ledger.post_credit(account, balance, kind=TransactionKind.DEPOSIT, description="test funding")
		account.refresh_from_db()
		return account

	return _make


@pytest.fixture
def make_item(db):
	def _make(vendor="sms-alpha", family="phone_number", region="nigeria", code="whatsapp", cost="700", **fields):
		return VendorItem.objects.create(vendor=vendor, family=family, region=region, code=code, cost=Decimal(str(cost)), **fields)

	return _make
