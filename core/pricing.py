"""Cost -> retail price conversion.

    price = max(round(cost * exchange_rate * markup_percentage / 100 + platform_fee, 2), min_price)

Pure and deterministic so a charged amount can be re-derived later from the cost
and the policy that produced it. A policy without a usable exchange rate never
prices at zero: it is swapped for FALLBACK_POLICY and logged.
"""

import logging
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP

from .constants import MONEY_PLACES, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricingPolicy:
	markup_percentage: Decimal
	min_price: Decimal
	platform_fee: Decimal
	exchange_rate: Decimal | None

	def as_dict(self) -> dict:
		return {k: (str(v) if v is not None else None) for k, v in asdict(self).items()}


# Used whenever the configured rate is missing or zero: 1 USD = 1600, 1000% markup, floor 500
FALLBACK_POLICY = PricingPolicy(
	markup_percentage=Decimal("1000"),
	min_price=Decimal("500"),
	platform_fee=Decimal("0"),
	exchange_rate=Decimal("1600"),
)


@dataclass(frozen=True)
class PriceBreakdown:
	cost: Decimal
	converted_cost: Decimal
	price: Decimal
	policy: PricingPolicy
	fallback: bool


def effective_policy(policy: PricingPolicy | None) -> tuple[PricingPolicy, bool]:
	"""
	Return (policy, used_fallback). Fails closed on a missing/zero/negative exchange rate.
	"""
	if policy is None or policy.exchange_rate is None or Decimal(policy.exchange_rate) <= 0:
		logger.warning(
			"Pricing policy unusable, applying fallback policy",
			extra={"policy": policy.as_dict() if policy else None},
		)
		return FALLBACK_POLICY, True
	return policy, False


def quote(cost, policy: PricingPolicy | None) -> PriceBreakdown:
	cost = Decimal(str(cost))
	if cost < 0:
		raise ValueError("cost must be >= 0")

	policy, fallback = effective_policy(policy)
	converted = cost * Decimal(policy.exchange_rate)
	raw = converted * Decimal(policy.markup_percentage) / Decimal(100) + Decimal(policy.platform_fee)
	rounded = raw.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
	final = max(rounded, to_money(policy.min_price))
	return PriceBreakdown(
		cost=cost,
		converted_cost=to_money(converted),
		price=final,
		policy=policy,
		fallback=fallback,
	)


def price(cost, policy: PricingPolicy | None) -> Decimal:
	return quote(cost, policy).price
