"""Error taxonomy for wallet and fulfillment operations.

Every error carries a stable user_message (safe to show), a machine code and an
HTTP status hint used by the api app. Internal detail goes into str(exc) and the
logs only.
"""


class FulfillmentError(Exception):
	code = "fulfillment_error"
	status_code = 400
	user_message = "The request could not be completed."

	def __init__(self, detail: str = "", *, order=None, user_message: str | None = None):
		super().__init__(detail or self.user_message)
		self.detail = detail
		self.order = order
		if user_message:
			self.user_message = user_message


class InsufficientFunds(FulfillmentError):
	code = "insufficient_funds"
	status_code = 402
	user_message = "Insufficient balance. Please fund your wallet."

	def __init__(self, detail: str = "", *, required=None, balance=None, **kwargs):
		super().__init__(detail, **kwargs)
		self.required = required
		self.balance = balance


class ProviderUnavailable(FulfillmentError):
	"""Upstream refused or failed the call; safe for the caller to retry."""
	code = "provider_unavailable"
	status_code = 503
	user_message = "The service is temporarily unavailable. Your balance has not been charged."


class ProviderTimeout(FulfillmentError):
	"""Upstream did not answer in time: the outcome is unknown."""
	code = "provider_timeout"
	status_code = 504
	user_message = "The provider is taking longer than usual. Please check the order again shortly."


class InventoryExhausted(FulfillmentError):
	code = "inventory_exhausted"
	status_code = 409
	user_message = "No stock available for this item right now. Try another option."


class VerificationMismatch(FulfillmentError):
	code = "verification_mismatch"
	status_code = 400
	user_message = "Payment verification failed. Please contact support."


class ReconciliationRequired(FulfillmentError):
	code = "reconciliation_required"
	status_code = 202
	user_message = "Your order is being processed."


class InvalidTransition(FulfillmentError):
	code = "invalid_transition"
	status_code = 409
	user_message = "This action is not allowed for the order in its current state."


class CancellationRejected(FulfillmentError):
	code = "cancellation_rejected"
	status_code = 502
	user_message = "The provider could not cancel this order. It has not been changed."


class UnknownProvider(FulfillmentError):
	code = "unknown_provider"
	status_code = 404
	user_message = "The selected provider is not available."


class PurchaseLimitExceeded(FulfillmentError):
	code = "purchase_limit_exceeded"
	status_code = 429
	user_message = "You have too many open orders. Finish or cancel one first."


class BelowMinimumPurchase(FulfillmentError):
	code = "below_minimum_purchase"
	status_code = 400
	user_message = "The amount is below the minimum purchase for this product."


class DepositRejected(FulfillmentError):
	code = "deposit_rejected"
	status_code = 400
	user_message = "The deposit could not be accepted."


class ReferralRejected(FulfillmentError):
	code = "referral_rejected"
	status_code = 400
	user_message = "This referral code cannot be applied."
