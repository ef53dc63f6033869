"""Wallet ledger: the only code allowed to change Account.balance.

Every balance mutation is paired with a Transaction row written in the same
atomic unit, stamped with the before/after balances and the account's
ledger_sequence at mutation time. The log is append-only: rows only ever move
out of `pending`, and amounts are never edited.

debit() is an atomic conditional decrement
(UPDATE ... SET balance = balance - x WHERE balance >= x) judged by the
affected-row count, so two racing purchases cannot both pass a stale
sufficiency check.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction
from django.db.models import F, Q, Sum
from django.utils import timezone

from .constants import ZERO, to_money
from .errors import InsufficientFunds, InvalidTransition
from .models import (
	Account, Transaction, TransactionDirection, TransactionKind, TransactionStatus, generate_reference,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceMutation:
	account_id: object
	direction: str
	amount: Decimal
	balance_before: Decimal
	balance_after: Decimal
	sequence: int


def _positive(amount) -> Decimal:
	amount = to_money(amount)
	if amount <= 0:
		raise ValueError("Amount must be > 0")
	return amount


def _require_atomic() -> None:
	if not transaction.get_connection().in_atomic_block:
		raise RuntimeError("Ledger mutations must run inside transaction.atomic")


def _reload(account: Account) -> Account:
	row = Account.objects.select_for_update().only("balance", "ledger_sequence").get(pk=account.pk)
	account.balance = row.balance
	account.ledger_sequence = row.ledger_sequence
	return row


def has_sufficient_balance(account: Account, amount) -> bool:
	"""
	Advisory read. debit() re-checks atomically; never rely on this alone.
	"""
	balance = Account.objects.filter(pk=account.pk).values_list("balance", flat=True).first()
	return balance is not None and balance >= to_money(amount)


def debit(account: Account, amount) -> BalanceMutation:
	"""
	Decrement the balance iff it covers amount. Raises InsufficientFunds otherwise,
	leaving balance and log untouched.
	"""
	_require_atomic()
	amount = _positive(amount)
	updated = Account.objects.filter(pk=account.pk, balance__gte=amount).update(
		balance=F("balance") - amount,
		ledger_sequence=F("ledger_sequence") + 1,
	)
	if updated == 0:
		current = Account.objects.filter(pk=account.pk).values_list("balance", flat=True).first()
		raise InsufficientFunds(
			f"account {account.pk} balance {current} < {amount}",
			required=amount,
			balance=current,
		)
	row = _reload(account)
	return BalanceMutation(
		account_id=account.pk,
		direction=TransactionDirection.DEBIT,
		amount=amount,
		balance_before=row.balance + amount,
		balance_after=row.balance,
		sequence=row.ledger_sequence,
	)


def credit(account: Account, amount) -> BalanceMutation:
	"""
	Unconditional increment (deposits, refunds, commissions).
	"""
	_require_atomic()
	amount = _positive(amount)
	Account.objects.filter(pk=account.pk).update(
		balance=F("balance") + amount,
		ledger_sequence=F("ledger_sequence") + 1,
	)
	row = _reload(account)
	return BalanceMutation(
		account_id=account.pk,
		direction=TransactionDirection.CREDIT,
		amount=amount,
		balance_before=row.balance - amount,
		balance_after=row.balance,
		sequence=row.ledger_sequence,
	)


def record_transaction(
	account: Account,
	*,
	direction: str,
	kind: str,
	amount,
	status: str = TransactionStatus.COMPLETED,
	mutation: BalanceMutation | None = None,
	reference: str | None = None,
	payment_method: str = "wallet",
	description: str = "",
	metadata: dict | None = None,
	gateway_reference: str = "",
) -> Transaction:
	"""
	Write one ledger row. With a mutation, the row is 'posted' (money moved) and must
	agree with it; without one (e.g., deposit awaiting verification) it may only be pending.
	"""
	amount = _positive(amount)
	if mutation is not None:
		if mutation.direction != direction or mutation.amount != amount:
			raise ValueError("Transaction does not match the balance mutation it records")
	elif status != TransactionStatus.PENDING:
		raise ValueError("Only pending transactions may be recorded without a balance mutation")

	return Transaction.objects.create(
		account=account,
		direction=direction,
		kind=kind,
		amount=amount,
		balance_before=mutation.balance_before if mutation else None,
		balance_after=mutation.balance_after if mutation else None,
		sequence=mutation.sequence if mutation else None,
		status=status,
		reference=reference or generate_reference(),
		payment_method=payment_method,
		description=description[:255],
		metadata=metadata or {},
		gateway_reference=gateway_reference,
	)


@transaction.atomic
def post_debit(account: Account, amount, *, kind: str = TransactionKind.PURCHASE, status: str = TransactionStatus.COMPLETED, **fields) -> Transaction:
	mutation = debit(account, amount)
	txn = record_transaction(
		account, direction=TransactionDirection.DEBIT, kind=kind, amount=amount, status=status, mutation=mutation, **fields
	)
	logger.info(
		"Debit posted",
		extra={"account_id": str(account.pk), "amount": str(txn.amount), "reference": txn.reference, "txn_status": status},
	)
	return txn


@transaction.atomic
def post_credit(account: Account, amount, *, kind: str, status: str = TransactionStatus.COMPLETED, **fields) -> Transaction:
	mutation = credit(account, amount)
	txn = record_transaction(
		account, direction=TransactionDirection.CREDIT, kind=kind, amount=amount, status=status, mutation=mutation, **fields
	)
	logger.info(
		"Credit posted",
		extra={"account_id": str(account.pk), "amount": str(txn.amount), "reference": txn.reference, "kind": kind},
	)
	return txn


def finalize_transaction(txn: Transaction, status: str, **metadata) -> Transaction:
	"""
	Move a pending row to a final status. Completed rows must be posted.
	"""
	if status == TransactionStatus.PENDING:
		raise ValueError("Cannot finalize to pending")
	if status == TransactionStatus.COMPLETED and not txn.is_posted:
		raise InvalidTransition(f"{txn.reference} has no balance mutation and cannot complete")

	merged = {**(txn.metadata or {}), **metadata}
	updated = Transaction.objects.filter(pk=txn.pk, status=TransactionStatus.PENDING).update(
		status=status, metadata=merged, updated_at=timezone.now()
	)
	if updated == 0:
		raise InvalidTransition(f"{txn.reference} is not pending")
	txn.status = status
	txn.metadata = merged
	return txn


@transaction.atomic
def post_pending_credit(txn: Transaction, *, gateway_reference: str = "") -> Transaction:
	"""
	Apply a verified pending credit (deposit). Idempotent: a completed row is returned as-is.
	"""
	txn = Transaction.objects.select_for_update().get(pk=txn.pk)
	if txn.status == TransactionStatus.COMPLETED:
		return txn
	if txn.status != TransactionStatus.PENDING or txn.is_posted or txn.direction != TransactionDirection.CREDIT:
		raise InvalidTransition(f"{txn.reference} cannot be posted from status {txn.status}")

	mutation = credit(txn.account, txn.amount)
	txn.balance_before = mutation.balance_before
	txn.balance_after = mutation.balance_after
	txn.sequence = mutation.sequence
	txn.status = TransactionStatus.COMPLETED
	if gateway_reference:
		txn.gateway_reference = gateway_reference
	txn.save(update_fields=["balance_before", "balance_after", "sequence", "status", "gateway_reference", "updated_at"])
	logger.info("Pending credit posted", extra={"account_id": str(txn.account_id), "reference": txn.reference})
	return txn


def reconstruct_balance(account: Account) -> Decimal:
	"""
	Replay the log: sum of posted credits minus posted debits.

	A reserved purchase debit that was compensated stays posted (status failed) next to
	its completed refund credit, so the pair nets to zero.
	"""
	posted = Transaction.objects.filter(account=account, sequence__isnull=False)
	totals = posted.aggregate(
		credits=Sum("amount", filter=Q(direction=TransactionDirection.CREDIT)),
		debits=Sum("amount", filter=Q(direction=TransactionDirection.DEBIT)),
	)
	return to_money((totals["credits"] or ZERO) - (totals["debits"] or ZERO))


def latest_posted_balance(account: Account) -> Decimal:
	last = (
		Transaction.objects.filter(account=account, sequence__isnull=False)
		.order_by("-sequence")
		.values_list("balance_after", flat=True)
		.first()
	)
	return last if last is not None else ZERO
