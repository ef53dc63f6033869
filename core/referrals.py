"""Referral links, signup bonus and purchase commissions.

A referrer earns a percentage of each completed purchase their referee makes:
the full rate for the first N purchases, then the after-cap rate (0 by default).
Commission is a side effect of a purchase; it never blocks or rolls back the
purchase that triggered it.
"""

import logging

from django.db import transaction
from django.db.models import Count, F, Sum

from . import ledger
from .config import current_config
from .constants import ZERO, to_money
from .errors import ReferralRejected
from .models import (
	Account, Referral, ReferralCommission, Transaction, TransactionDirection, TransactionKind, TransactionStatus,
	generate_reference,
)

logger = logging.getLogger(__name__)


def commission_rate(referral: Referral, config):
	if referral.purchase_count < config.referral_commission_purchases:
		return config.referral_commission_rate
	return config.referral_commission_rate_after


def process_commission(txn: Transaction, config=None):
	"""
	Credit the referrer for one completed purchase debit. Returns the ReferralCommission,
	or None when nothing applies or anything went wrong (logged, never raised).
	"""
	try:
		with transaction.atomic():
			return _process_commission(txn, config or current_config())
	except Exception:
		logger.exception("Referral commission failed", extra={"reference": txn.reference, "account_id": str(txn.account_id)})
		return None


def _process_commission(txn: Transaction, config):
	txn = Transaction.objects.get(pk=txn.pk)
	if (
		txn.kind != TransactionKind.PURCHASE
		or txn.direction != TransactionDirection.DEBIT
		or txn.status != TransactionStatus.COMPLETED
	):
		return None

	referral = Referral.objects.select_for_update().filter(referee_id=txn.account_id, status="active").first()
	if referral is None:
		return None
	existing = ReferralCommission.objects.filter(trigger_transaction=txn).first()
	if existing is not None:
		return existing

	rate = commission_rate(referral, config)
	amount = to_money(txn.amount * rate / 100)
	payout = None
	if amount > ZERO:
		payout = ledger.post_credit(
			referral.referrer,
			amount,
			kind=TransactionKind.COMMISSION,
			reference=f"{txn.reference}-C",
			description=f"Referral commission ({rate}%)",
			metadata={"trigger": txn.reference, "referral_id": referral.pk},
		)
	commission = ReferralCommission.objects.create(
		referral=referral,
		trigger_transaction=txn,
		commission_transaction=payout,
		transaction_amount=txn.amount,
		rate=rate,
		amount=amount,
	)
	Referral.objects.filter(pk=referral.pk).update(
		purchase_count=F("purchase_count") + 1,
		total_commission=F("total_commission") + amount,
	)
	logger.info(
		"Referral commission recorded",
		extra={"referrer": str(referral.referrer_id), "trigger": txn.reference, "amount": str(amount)},
	)
	return commission


@transaction.atomic
def apply_referral_code(referee: Account, code: str, config=None) -> Referral:
	"""
	Link referee to the owner of code and pay the signup bonus to the referee.
	"""
	config = config or current_config()
	code = (code or "").strip().upper()
	referrer = Account.objects.filter(referral_code=code, is_active=True).first()
	if referrer is None:
		raise ReferralRejected(f"unknown referral code {code!r}", user_message="Invalid referral code.")
	if referrer.pk == referee.pk:
		raise ReferralRejected("self referral", user_message="You cannot use your own referral code.")
	if Referral.objects.filter(referee=referee).exists():
		raise ReferralRejected("already referred", user_message="A referral code has already been applied.")

	referral = Referral.objects.create(referrer=referrer, referee=referee, code=code)
	bonus = to_money(config.referral_signup_bonus)
	if bonus > ZERO:
		ledger.post_credit(
			referee,
			bonus,
			kind=TransactionKind.BONUS,
			reference=generate_reference("BON"),
			description="Referral signup bonus",
			metadata={"referral_id": referral.pk},
		)
	logger.info("Referral applied", extra={"referrer": str(referrer.pk), "referee": str(referee.pk), "bonus": str(bonus)})
	return referral


def referral_stats(account: Account) -> dict:
	referrals = Referral.objects.filter(referrer=account)
	totals = referrals.aggregate(
		count=Count("id"),
		commission=Sum("total_commission"),
	)
	return {
		"referral_code": account.referral_code,
		"referred_count": totals["count"] or 0,
		"active_referrals": referrals.filter(status="active").count(),
		"total_commission": str(to_money(totals["commission"] or ZERO)),
		"commission_payments": ReferralCommission.objects.filter(referral__referrer=account, amount__gt=0).count(),
	}
