"""Wallet funding through a payment gateway.

initialize_deposit records a pending, unposted credit and starts a checkout.
verify_deposit asks the gateway what was paid and posts the credit only when the
reported reference and amount match what we recorded. Verification is
idempotent: a completed deposit is returned as-is, never credited twice.
"""

import logging

from django.db import transaction
from django.utils import timezone

from . import ledger
from .adapters.payment_gateway import get_gateway
from .config import current_config
from .constants import AMOUNT_TOLERANCE, to_money
from .errors import DepositRejected, FulfillmentError, VerificationMismatch
from .models import Transaction, TransactionDirection, TransactionKind, TransactionStatus, generate_reference
from .services import ensure_no_open_transaction

logger = logging.getLogger(__name__)

# gateway statuses that mean "not paid yet", not "failed"
WAITING_STATUSES = {"pending", "processing", "ongoing"}


def initialize_deposit(account, amount, gateway: str = "stub", config=None):
	"""
	Returns (pending Transaction, checkout dict with redirect_url and reference).
	"""
	config = config or current_config()
	amount = to_money(amount)
	if amount < config.min_deposit or amount > config.max_deposit:
		raise DepositRejected(
			f"deposit {amount} outside [{config.min_deposit}, {config.max_deposit}]",
			user_message=f"Deposits must be between {config.min_deposit} and {config.max_deposit}.",
		)
	gw = get_gateway(gateway)

	with transaction.atomic():
		# a new checkout supersedes any unpaid one on the same gateway
		superseded = Transaction.objects.filter(
			account=account,
			kind=TransactionKind.DEPOSIT,
			status=TransactionStatus.PENDING,
			payment_method=gateway,
			sequence__isnull=True,
		).update(status=TransactionStatus.EXPIRED, updated_at=timezone.now())
		txn = ledger.record_transaction(
			account,
			direction=TransactionDirection.CREDIT,
			kind=TransactionKind.DEPOSIT,
			amount=amount,
			status=TransactionStatus.PENDING,
			reference=generate_reference("DEP"),
			payment_method=gateway,
			description=f"Wallet funding via {gateway}",
		)

	ensure_no_open_transaction("gateway.initialize_payment")
	try:
		checkout = gw.initialize_payment(account, amount, txn.reference)
	except FulfillmentError:
		ledger.finalize_transaction(txn, TransactionStatus.FAILED, failure="gateway initialization failed")
		raise
	logger.info(
		"Deposit initialized",
		extra={"account_id": str(account.pk), "reference": txn.reference, "amount": str(amount), "superseded": superseded},
	)
	return txn, checkout


def verify_deposit(reference: str, gateway_txn_id: str | None = None) -> Transaction:
	txn = Transaction.objects.filter(reference=reference, kind=TransactionKind.DEPOSIT).first()
	if txn is None:
		raise VerificationMismatch(f"no deposit with reference {reference!r}")
	if txn.status == TransactionStatus.COMPLETED:
		return txn
	if txn.status != TransactionStatus.PENDING:
		raise DepositRejected(
			f"deposit {reference} is {txn.status}",
			user_message="This payment session is no longer valid. Please start a new deposit.",
		)

	gw = get_gateway(txn.payment_method)
	ensure_no_open_transaction("gateway.verify_payment")
	result = gw.verify_payment(reference, gateway_txn_id)

	if not result.success:
		if result.status in WAITING_STATUSES:
			return txn
		try:
			ledger.finalize_transaction(txn, TransactionStatus.FAILED, gateway_status=result.status)
		except FulfillmentError:
			# verified concurrently; report the current row
			return Transaction.objects.get(pk=txn.pk)
		logger.info("Deposit failed at gateway", extra={"reference": reference, "gateway_status": result.status})
		return txn

	amount_ok = result.amount is not None and abs(to_money(result.amount) - txn.amount) <= AMOUNT_TOLERANCE
	if result.reference != reference or not amount_ok:
		logger.error(
			"Deposit verification mismatch, possible fraud",
			extra={
				"reference": reference,
				"gateway_reference": result.reference,
				"expected": str(txn.amount),
				"reported": str(result.amount),
				"account_id": str(txn.account_id),
			},
		)
		raise VerificationMismatch(f"gateway reported {result.reference}/{result.amount} for {reference}/{txn.amount}")

	txn = ledger.post_pending_credit(txn, gateway_reference=result.gateway_ref)
	logger.info("Deposit credited", extra={"reference": reference, "account_id": str(txn.account_id), "amount": str(txn.amount)})
	return txn
