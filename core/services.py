"""Fulfillment orchestration: purchase, status, cancel, report, finish, expire.

Every purchase runs in three phases:

1. reserve  (atomic)   debit + pending Transaction + pending Order
2. call     (no txn)   provider.fulfill, which may be slow, fail or hang
3. settle   (atomic)   complete the debit, or credit it back

A provider timeout is an unknown outcome: nothing is refunded and nothing is
confirmed. The order stays processing with its debit pending until a status
check or the reconciliation sweep learns the truth.

Lifecycle transitions lock the order row and re-check its status before moving
money. Refund credits use the order's refund reference, which is unique in the
ledger, so an order can never be refunded twice.
"""

import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from . import ledger
from .adapters.base import ERROR_NO_INVENTORY
from .adapters.registry import get_registry
from .config import current_config
from .constants import ZERO, to_money
from .errors import (
	BelowMinimumPurchase, CancellationRejected, InvalidTransition, InventoryExhausted,
	ProviderTimeout, ProviderUnavailable, PurchaseLimitExceeded, ReconciliationRequired,
)
from .models import (
	ACTIVE_ORDER_STATUSES, Order, OrderStatus, ProductKind, TransactionKind, TransactionStatus,
)
from .referrals import process_commission

logger = logging.getLogger(__name__)

# debit status when an order closes with a full refund
_REFUNDED_DEBIT_STATUS = {
	OrderStatus.CANCELLED: TransactionStatus.CANCELLED,
	OrderStatus.EXPIRED: TransactionStatus.EXPIRED,
}


def ensure_no_open_transaction(operation: str) -> None:
	"""
	Provider and gateway calls must not hold row locks while waiting on the network.
	"""
	if settings.STRICT_IO_GUARD and transaction.get_connection().in_atomic_block:
		raise RuntimeError(f"{operation} must not run inside a database transaction")


class FulfillmentService:
	"""
	Entry point for order lifecycles. Takes one config snapshot per operation unless
	a fixed snapshot is injected (tests, replays).
	"""

	def __init__(self, registry=None, config=None):
		self.registry = registry or get_registry()
		self._config = config

	def _snapshot(self):
		return self._config or current_config()

	# --- Purchase -------------------------------------------------------------

	def purchase(self, account, kind: str, region: str, item_code: str, strategy: str = "cheapest", provider_id: str | None = None) -> Order:
		if kind not in ProductKind.values:
			raise ValueError(f"Unknown product kind {kind!r}")
		ensure_no_open_transaction("purchase")
		config = self._snapshot()

		open_orders = Order.objects.filter(account=account, status__in=ACTIVE_ORDER_STATUSES).count()
		if open_orders >= config.max_open_orders:
			raise PurchaseLimitExceeded(f"account {account.pk} has {open_orders} open orders")

		selection = self.registry.select_best(kind, region, item_code, strategy, config, provider_id)
		amount = selection.price
		minimum = config.min_purchase_for(kind)
		if amount < minimum:
			raise BelowMinimumPurchase(f"{kind} price {amount} below minimum {minimum}")

		order = self._reserve(account, kind, region, item_code, selection, config)
		provider = selection.provider

		ensure_no_open_transaction("provider.fulfill")
		try:
			result = provider.fulfill(region, selection.quote.operator, item_code, account.pk)
		except ProviderTimeout as exc:
			return self._mark_unknown(order, config, str(exc))
		except ProviderUnavailable as exc:
			order = self._compensate(order, str(exc))
			raise ProviderUnavailable(str(exc), order=order) from exc
		except Exception as exc:
			logger.exception("Provider fulfill raised", extra={"order": order.reference, "provider": provider.identifier})
			order = self._compensate(order, f"provider error: {exc}")
			raise ProviderUnavailable(str(exc), order=order) from exc

		if not result.success:
			order = self._compensate(order, result.error_message or "provider rejected the order")
			if result.error_code == ERROR_NO_INVENTORY:
				raise InventoryExhausted(result.error_message, order=order)
			raise ProviderUnavailable(result.error_message, order=order)

		order, debit_completed = self._confirm(order, result, provider, config)
		if debit_completed:
			process_commission(order.debit_transaction, config)
		return order

	@transaction.atomic
	def _reserve(self, account, kind, region, item_code, selection, config) -> Order:
		breakdown = selection.breakdown
		debit = ledger.post_debit(
			account,
			selection.price,
			kind=TransactionKind.PURCHASE,
			status=TransactionStatus.PENDING,
			description=f"{ProductKind(kind).label} {region}/{item_code} via {selection.provider.identifier}",
			metadata={
				"provider": selection.provider.identifier,
				"operator": selection.quote.operator,
				"cost": str(breakdown.cost),
				"cost_currency": selection.quote.currency,
				"pricing": breakdown.policy.as_dict(),
				"pricing_fallback": breakdown.fallback,
				"config_version": config.version,
			},
		)
		order = Order.objects.create(
			account=account,
			kind=kind,
			status=OrderStatus.PENDING,
			amount_charged=debit.amount,
			provider_identifier=selection.provider.identifier,
			region=region,
			operator=selection.quote.operator,
			item_code=item_code,
			debit_transaction=debit,
		)
		logger.info(
			"Funds reserved",
			extra={"order": order.reference, "account_id": str(account.pk), "amount": str(debit.amount)},
		)
		return order

	def _mark_unknown(self, order: Order, config, detail: str) -> Order:
		with transaction.atomic():
			order = self._lock(order)
			if order.status == OrderStatus.PENDING:
				order.status = OrderStatus.PROCESSING
				order.expires_at = timezone.now() + timedelta(minutes=config.order_ttl_minutes)
				order.failure_reason = detail
				order.save(update_fields=["status", "expires_at", "failure_reason", "updated_at"])
		condition = ReconciliationRequired(detail, order=order)
		logger.warning(
			"Fulfillment outcome unknown, left for reconciliation",
			extra={"order": order.reference, "code": condition.code, "detail": detail},
		)
		return order

	def _compensate(self, order: Order, reason: str) -> Order:
		with transaction.atomic():
			order = self._lock(order)
			if order.is_terminal:
				return order
			self._close(order, OrderStatus.FAILED, refund=order.amount_charged, reason=reason)
		logger.warning("Purchase failed, funds returned", extra={"order": order.reference, "reason": reason})
		return order

	def _confirm(self, order: Order, result, provider, config):
		with transaction.atomic():
			order = self._lock(order)
			order.provider_reference = result.provider_order_id
			order.native_status = result.status or ""
			order.delivered_payload = result.delivered_payload or {}
			order.expires_at = result.expires_at or timezone.now() + timedelta(minutes=config.order_ttl_minutes)
			mapped = provider.map_status(result.status)
			if mapped in ACTIVE_ORDER_STATUSES:
				order.status = mapped
				ledger.finalize_transaction(order.debit_transaction, TransactionStatus.COMPLETED, provider_order_id=result.provider_order_id)
				order.save()
				debit_completed = True
			else:
				debit_completed = self._settle(order, mapped, Decimal("0"), result.status)
		logger.info("Order confirmed", extra={"order": order.reference, "status": order.status, "provider": provider.identifier})
		return order, debit_completed

	# --- Status ---------------------------------------------------------------

	def check_status(self, order: Order, *, strict: bool = False) -> Order:
		"""
		Refresh an open order from its provider. When the provider cannot answer the
		stored order is returned unchanged, or the failure is raised if strict is set.
		"""
		order = Order.objects.select_related("debit_transaction").get(pk=order.pk)
		if order.is_terminal or not order.provider_reference:
			return order

		provider = self.registry.for_order(order)
		ensure_no_open_transaction("provider.check_status")
		try:
			result = provider.check_status(order.provider_reference, order.account_id)
		except (ProviderTimeout, ProviderUnavailable) as exc:
			logger.warning("Status check failed", extra={"order": order.reference, "error": str(exc)})
			if strict:
				raise
			return order
		if not result.success:
			logger.warning("Status check failed", extra={"order": order.reference, "error": result.error_message})
			if strict:
				raise ProviderUnavailable(result.error_message or "status unavailable", order=order)
			return order

		mapped = result.mapped_status or provider.map_status(result.native_status)
		with transaction.atomic():
			order = self._lock(order)
			if order.is_terminal:
				return order
			changed = []
			if result.native_status and result.native_status != order.native_status:
				order.native_status = result.native_status
				changed.append("native_status")
			if result.delivered_payload and result.delivered_payload != order.delivered_payload:
				order.delivered_payload = result.delivered_payload
				changed.append("delivered_payload")
			if mapped in ACTIVE_ORDER_STATUSES:
				if mapped != order.status:
					order.status = mapped
					changed.append("status")
				if changed:
					order.save(update_fields=changed + ["updated_at"])
				return order
			debit_completed = self._settle(order, mapped, result.undelivered_ratio, result.native_status)

		if debit_completed:
			process_commission(order.debit_transaction, self._snapshot())
		return order

	def _settle(self, order: Order, mapped: str, undelivered_ratio, native: str) -> bool:
		"""
		Apply an upstream terminal outcome to a locked order. Returns True when the
		purchase debit completed in this call.
		"""
		if mapped == OrderStatus.COMPLETED:
			ratio = min(max(Decimal(undelivered_ratio or 0), Decimal("0")), Decimal("1"))
			refund = to_money(order.amount_charged * ratio) if ratio > 0 else None
			reason = f"partial delivery ({ratio:.2%} undelivered)" if refund else ""
			return self._close(order, OrderStatus.COMPLETED, refund=refund, reason=reason)
		if mapped == OrderStatus.EXPIRED:
			return self._expire_locked(order, f"provider reported {native}")
		return self._close(order, mapped, refund=order.amount_charged, reason=f"provider reported {native}")

	# --- User actions ---------------------------------------------------------

	def cancel(self, order: Order, reason: str = "cancelled by customer") -> Order:
		order = self._refetch(order)
		self._require_open(order, "cancel")
		provider = self.registry.for_order(order)
		ensure_no_open_transaction("provider.cancel")
		try:
			accepted = provider.cancel(order.provider_reference, order.account_id)
		except (ProviderTimeout, ProviderUnavailable) as exc:
			raise CancellationRejected(str(exc), order=order) from exc
		if not accepted:
			raise CancellationRejected(f"{provider.identifier} refused to cancel {order.provider_reference}", order=order)

		with transaction.atomic():
			order = self._lock(order)
			if not order.is_active:
				raise InvalidTransition(f"order {order.reference} is already {order.status}", order=order)
			self._close(order, OrderStatus.CANCELLED, refund=order.amount_charged, reason=reason)
		logger.info("Order cancelled", extra={"order": order.reference, "refund": str(order.amount_charged)})
		return order

	def report_bad(self, order: Order, reason: str = "") -> Order:
		order = self._refetch(order)
		self._require_open(order, "report")
		provider = self.registry.for_order(order)
		ensure_no_open_transaction("provider.report_bad")
		try:
			accepted = provider.report_bad(order.provider_reference, order.account_id)
		except (ProviderTimeout, ProviderUnavailable) as exc:
			raise CancellationRejected(str(exc), order=order) from exc
		if not accepted:
			raise CancellationRejected(
				f"{provider.identifier} refused the report for {order.provider_reference}",
				order=order,
				user_message="The provider could not process the report. The order has not been changed.",
			)

		with transaction.atomic():
			order = self._lock(order)
			if not order.is_active:
				raise InvalidTransition(f"order {order.reference} is already {order.status}", order=order)
			self._close(order, OrderStatus.REFUNDED, refund=order.amount_charged, reason=reason or "reported as bad")
		logger.info("Order reported and refunded", extra={"order": order.reference})
		return order

	def finish(self, order: Order) -> Order:
		order = self._refetch(order)
		if order.status != OrderStatus.PROCESSING or not order.has_deliverable:
			raise InvalidTransition(f"order {order.reference} has nothing delivered to finish", order=order)
		provider = self.registry.for_order(order)
		ensure_no_open_transaction("provider.finish")
		if not provider.finish(order.provider_reference, order.account_id):
			raise ProviderUnavailable(f"{provider.identifier} did not confirm finish", order=order)

		with transaction.atomic():
			order = self._lock(order)
			if order.status != OrderStatus.PROCESSING:
				raise InvalidTransition(f"order {order.reference} is already {order.status}", order=order)
			debit_completed = self._close(order, OrderStatus.COMPLETED, refund=None)
		if debit_completed:
			process_commission(order.debit_transaction, self._snapshot())
		return order

	def expire(self, order: Order, reason: str = "order expired") -> Order:
		"""
		Close a stale open order. Refunds in full unless something was delivered.
		"""
		with transaction.atomic():
			order = self._lock(order)
			if not order.is_active:
				return order
			debit_completed = self._expire_locked(order, reason)
		if debit_completed:
			process_commission(order.debit_transaction, self._snapshot())
		return order

	def list_orders(self, account, status: str | None = None):
		qs = Order.objects.filter(account=account).select_related("debit_transaction", "refund_transaction")
		if status:
			qs = qs.filter(status=status)
		return qs.order_by("-created_at")

	# --- Internals ------------------------------------------------------------

	def _expire_locked(self, order: Order, reason: str) -> bool:
		refund = None if order.has_deliverable else order.amount_charged
		return self._close(order, OrderStatus.EXPIRED, refund=refund, reason=reason)

	def _close(self, order: Order, status: str, *, refund, reason: str = "") -> bool:
		"""
		Move a locked, open order to a terminal status inside the caller's atomic block,
		settling its debit and posting at most one refund credit.
		"""
		full_refund = refund is not None and refund >= order.amount_charged
		debit = order.debit_transaction
		debit_completed = False
		if debit.status == TransactionStatus.PENDING:
			if full_refund:
				final = _REFUNDED_DEBIT_STATUS.get(status, TransactionStatus.FAILED)
			else:
				final = TransactionStatus.COMPLETED
				debit_completed = True
			ledger.finalize_transaction(debit, final, order_status=status)

		if refund is not None and refund > ZERO:
			order.refund_transaction = ledger.post_credit(
				order.account,
				refund,
				kind=TransactionKind.REFUND,
				reference=order.refund_reference,
				description=f"Refund for {order.reference} ({status})",
				metadata={"order": order.reference, "reason": reason},
			)

		order.status = status
		if reason:
			order.failure_reason = reason
		order.save()
		return debit_completed

	def _lock(self, order: Order) -> Order:
		return Order.objects.select_for_update(of=("self",)).select_related("debit_transaction", "account").get(pk=order.pk)

	def _refetch(self, order: Order) -> Order:
		return Order.objects.select_related("debit_transaction", "account").get(pk=order.pk)

	def _require_open(self, order: Order, action: str) -> None:
		if not order.is_active:
			raise InvalidTransition(f"cannot {action} order {order.reference} in status {order.status}", order=order)
		if not order.provider_reference:
			raise InvalidTransition(f"order {order.reference} has no provider reference yet", order=order)

