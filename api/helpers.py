"""Shared plumbing for the JSON views.

Errors leave the API as {"success": false, "error": <code>, "message": <stable text>};
internal detail is added only when DEBUG is on. Anything unexpected becomes a
generic 500 and is logged with its traceback.
"""

import functools
import json
import logging

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError
from django.http import JsonResponse

from core.constants import money_str
from core.errors import FulfillmentError
from core.models import Account, Order

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again."


class Unauthenticated(FulfillmentError):
	code = "unauthenticated"
	status_code = 401
	user_message = "Missing or unknown account."


def error_response(code: str, message: str, status: int, detail: str = "") -> JsonResponse:
	body = {"success": False, "error": code, "message": message}
	if settings.DEBUG and detail:
		body["detail"] = detail
	return JsonResponse(body, status=status)


def api_view(methods=("GET",)):
	"""
	Method check + error translation for a JSON endpoint.
	"""
	def decorator(view):
		@functools.wraps(view)
		def wrapped(request, *args, **kwargs):
			if request.method not in methods:
				return error_response("method_not_allowed", f"{'/'.join(methods)} only", 405)
			try:
				return view(request, *args, **kwargs)
			except FulfillmentError as e:
				if e.status_code >= 500:
					logger.warning("Request failed", extra={"code": e.code, "path": request.path, "detail": str(e)})
				return error_response(e.code, e.user_message, e.status_code, str(e))
			except IntegrityError as e:
				return error_response("conflict", "This record already exists.", 409, str(e))
			except Order.DoesNotExist:
				return error_response("not_found", "Order not found.", 404)
			except (ValueError, ValidationError) as e:
				return error_response("invalid_request", "The request is invalid.", 400, str(e))
			except Exception:
				logger.exception("Unhandled API error", extra={"path": request.path})
				return error_response("internal_error", GENERIC_ERROR, 500)
		return wrapped
	return decorator


def read_json(request) -> dict:
	body = json.loads(request.body or b"{}")
	if not isinstance(body, dict):
		raise ValueError("JSON object expected")
	return body


def current_account(request) -> Account:
	account_id = request.headers.get("X-Account-Id", "").strip()
	if not account_id:
		raise Unauthenticated("X-Account-Id header missing")
	try:
		return Account.objects.get(pk=account_id, is_active=True)
	except (Account.DoesNotExist, ValidationError, ValueError):
		raise Unauthenticated(f"unknown account {account_id!r}") from None


def order_json(order: Order) -> dict:
	return {
		"reference": order.reference,
		"kind": order.kind,
		"status": order.status,
		"amount_charged": money_str(order.amount_charged),
		"provider": order.provider_identifier,
		"region": order.region,
		"operator": order.operator,
		"item_code": order.item_code,
		"delivered": order.delivered_payload or {},
		"expires_at": order.expires_at.isoformat() if order.expires_at else None,
		"refunded": order.refund_transaction_id is not None,
		"created_at": order.created_at.isoformat(),
	}


def transaction_json(txn) -> dict:
	return {
		"reference": txn.reference,
		"direction": txn.direction,
		"kind": txn.kind,
		"amount": money_str(txn.amount),
		"balance_before": money_str(txn.balance_before) if txn.balance_before is not None else None,
		"balance_after": money_str(txn.balance_after) if txn.balance_after is not None else None,
		"status": txn.status,
		"description": txn.description,
		"created_at": txn.created_at.isoformat(),
	}
