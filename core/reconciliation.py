"""Idempotent sweeps run by a scheduler (see the reconcile management command).

sweep_stale_orders resolves orders left open past their expiry. An order the
provider never acknowledged (a timed-out order call, or a crash between reserve
and provider call) has nothing upstream to ask: it is expired, refunded iff
nothing was delivered. Orphans without an expiry are swept once they are older
than the order TTL.

An order the provider did acknowledge is only closed on the provider's word. The
sweep asks for its status first; if the provider cannot answer, the order is left
for the next run. If the provider still has it open, a delivered order expires
without refund and an undelivered one is cancelled upstream, refunded only once
the provider accepts the cancellation.

expire_stale_deposits closes checkouts that were never verified.
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from .config import current_config
from .errors import FulfillmentError
from .models import ACTIVE_ORDER_STATUSES, Order, Transaction, TransactionKind, TransactionStatus
from .services import FulfillmentService

logger = logging.getLogger(__name__)


def stale_orders(now=None, config=None):
	now = now or timezone.now()
	config = config or current_config()
	orphan_cutoff = now - timedelta(minutes=config.order_ttl_minutes)
	return Order.objects.filter(status__in=ACTIVE_ORDER_STATUSES).filter(
		Q(expires_at__lt=now) | Q(expires_at__isnull=True, created_at__lt=orphan_cutoff)
	).order_by("created_at")


def sweep_stale_orders(now=None, service: FulfillmentService | None = None) -> dict:
	service = service or FulfillmentService()
	counts = {"checked": 0, "resolved": 0, "expired": 0, "cancelled": 0, "refunded": 0, "deferred": 0}
	for order in stale_orders(now):
		counts["checked"] += 1
		if order.provider_reference:
			try:
				order = service.check_status(order, strict=True)
			except FulfillmentError as exc:
				logger.warning("Status check failed during sweep, order left open", extra={"order": order.reference, "error": str(exc)})
				counts["deferred"] += 1
				continue
			if order.is_terminal:
				counts["resolved"] += 1
				continue
			if not order.has_deliverable:
				try:
					order = service.cancel(order, reason="cancelled by reconciliation sweep")
				except FulfillmentError as exc:
					logger.warning("Provider kept a stale order open", extra={"order": order.reference, "error": str(exc)})
					counts["deferred"] += 1
					continue
				counts["cancelled"] += 1
				counts["refunded"] += 1
				continue
		order = service.expire(order, reason="expired by reconciliation sweep")
		counts["expired"] += 1
		if order.refund_transaction_id:
			counts["refunded"] += 1
	logger.info("Order sweep finished", extra=counts)
	return counts


def expire_stale_deposits(now=None) -> int:
	now = now or timezone.now()
	cutoff = now - timedelta(minutes=settings.DEPOSIT_EXPIRY_MINUTES)
	expired = Transaction.objects.filter(
		kind=TransactionKind.DEPOSIT,
		status=TransactionStatus.PENDING,
		sequence__isnull=True,
		created_at__lt=cutoff,
	).update(status=TransactionStatus.EXPIRED, updated_at=now)
	if expired:
		logger.info("Expired stale deposits", extra={"count": expired})
	return expired


def reconcile(now=None, *, orders: bool = True, deposits: bool = True) -> dict:
	summary = {}
	if orders:
		summary["orders"] = sweep_stale_orders(now)
	if deposits:
		summary["deposits_expired"] = expire_stale_deposits(now)
	return summary
