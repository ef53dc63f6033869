import dataclasses
from decimal import Decimal

import pytest

from core.accounts import create_account
from core.errors import ProviderUnavailable, ReferralRejected
from core.models import Account, Referral, ReferralCommission, TransactionKind
from core.referrals import apply_referral_code, process_commission, referral_stats
from core.services import FulfillmentService

pytestmark = pytest.mark.django_db


def balance_of(account):
	account.refresh_from_db()
	return account.balance


@pytest.fixture
def referrer(make_account):
	return make_account()


@pytest.fixture
def referee(make_account, referrer, flat_config):
	return make_account(balance="5000", referral_code=referrer.referral_code, config=flat_config)


@pytest.fixture
def voucher(make_item):
	return make_item(
		vendor="voucher-hub", family="voucher", region="ng", code="airtime-1000", cost="1000",
		currency="NGN", initial_status="DONE", deliverable={"pin": "1234-5678"},
	)


def test_signup_with_code_pays_bonus_to_referee(referrer, referee):
	assert balance_of(referee) == Decimal("5500.00")
	assert referee.transactions.filter(kind=TransactionKind.BONUS, amount=Decimal("500")).exists()
	assert balance_of(referrer) == Decimal("0.00")
	assert Referral.objects.get(referee=referee).referrer == referrer


def test_commission_for_first_three_purchases_only(service, referrer, referee, voucher):
	for _ in range(3):
		service.purchase(referee, "voucher", "ng", "airtime-1000")
	assert balance_of(referrer) == Decimal("300.00")

	service.purchase(referee, "voucher", "ng", "airtime-1000")
	assert balance_of(referrer) == Decimal("300.00")

	commissions = ReferralCommission.objects.order_by("id")
	assert [c.amount for c in commissions] == [Decimal("100.00")] * 3 + [Decimal("0.00")]
	assert commissions.last().commission_transaction is None
	referral = Referral.objects.get(referee=referee)
	assert referral.purchase_count == 4
	assert referral.total_commission == Decimal("300.00")


def test_rate_after_the_cap_is_configurable(flat_config, referrer, referee, voucher):
	service = FulfillmentService(config=dataclasses.replace(
		flat_config, referral_commission_purchases=1, referral_commission_rate_after=Decimal("5"),
	))
	service.purchase(referee, "voucher", "ng", "airtime-1000")
	service.purchase(referee, "voucher", "ng", "airtime-1000")
	assert balance_of(referrer) == Decimal("150.00")


def test_commission_is_paid_once_per_purchase(service, flat_config, referrer, referee, voucher):
	order = service.purchase(referee, "voucher", "ng", "airtime-1000")
	again = process_commission(order.debit_transaction, flat_config)

	assert again == ReferralCommission.objects.get(trigger_transaction=order.debit_transaction)
	assert balance_of(referrer) == Decimal("100.00")
	assert again.commission_transaction.reference == f"{order.debit_transaction.reference}-C"


def test_failed_purchase_earns_nothing(service, referrer, referee, make_item):
	make_item(vendor="voucher-hub", family="voucher", region="ng", code="broken", cost="1000", currency="NGN", behavior="fail")
	with pytest.raises(ProviderUnavailable):
		service.purchase(referee, "voucher", "ng", "broken")
	assert not ReferralCommission.objects.exists()
	assert balance_of(referrer) == Decimal("0.00")


def test_unreferred_purchase_earns_nothing(service, make_account, voucher):
	buyer = make_account(balance="2000")
	order = service.purchase(buyer, "voucher", "ng", "airtime-1000")
	assert process_commission(order.debit_transaction) is None
	assert not ReferralCommission.objects.exists()


def test_self_referral_rejected(referrer):
	with pytest.raises(ReferralRejected):
		apply_referral_code(referrer, referrer.referral_code)


def test_second_referral_rejected(make_account, referrer, referee):
	other = make_account()
	with pytest.raises(ReferralRejected):
		apply_referral_code(referee, other.referral_code)


def test_bad_code_rolls_back_signup():
	with pytest.raises(ReferralRejected):
		create_account("newcomer@example.com", referral_code="NOPE1234")
	assert not Account.objects.filter(email="newcomer@example.com").exists()


def test_codes_are_case_insensitive(make_account, referrer, flat_config):
	referee = make_account(referral_code=referrer.referral_code.lower(), config=flat_config)
	assert Referral.objects.get(referee=referee).code == referrer.referral_code


def test_stats(service, referrer, referee, voucher):
	service.purchase(referee, "voucher", "ng", "airtime-1000")
	stats = referral_stats(referrer)
	assert stats["referral_code"] == referrer.referral_code
	assert stats["referred_count"] == 1
	assert stats["total_commission"] == "100.00"
	assert stats["commission_payments"] == 1
