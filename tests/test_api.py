import json
from decimal import Decimal

import pytest

from core.models import Account, OrderStatus

pytestmark = pytest.mark.django_db


def post(client, url, body=None, account=None):
	headers = {"X-Account-Id": str(account.pk)} if account else {}
	return client.post(url, data=json.dumps(body or {}), content_type="application/json", headers=headers)


def get(client, url, account=None, **params):
	headers = {"X-Account-Id": str(account.pk)} if account else {}
	return client.get(url, params, headers=headers)


@pytest.fixture
def rich(make_account):
	return make_account(balance="20000")


def test_health(client):
	assert client.get("/api/health").json() == {"ok": True}


def test_signup_and_referral_bonus(client):
	first = post(client, "/api/accounts", {"email": "Ada@Example.com"})
	assert first.status_code == 201
	code = first.json()["referral_code"]

	second = post(client, "/api/accounts", {"email": "bola@example.com", "referral_code": code})
	assert second.status_code == 201
	assert second.json()["balance"] == "500.00"
	assert Account.objects.filter(email="ada@example.com").exists()


def test_signup_with_bad_code(client):
	resp = post(client, "/api/accounts", {"email": "c@example.com", "referral_code": "ZZZZ"})
	assert resp.status_code == 400
	assert resp.json()["error"] == "referral_rejected"


def test_duplicate_signup_conflicts(client):
	post(client, "/api/accounts", {"email": "d@example.com"})
	assert post(client, "/api/accounts", {"email": "d@example.com"}).status_code == 409


def test_requires_account_header(client):
	resp = client.get("/api/balance")
	assert resp.status_code == 401
	body = resp.json()
	assert body["success"] is False
	assert body["error"] == "unauthenticated"
	assert body["message"] == "Missing or unknown account."


def test_wrong_method(client, rich):
	assert get(client, "/api/deposits", rich).status_code == 405


def test_purchase_and_cancel(client, rich, make_item):
	make_item(cost="0.5")

	resp = post(client, "/api/orders", {"kind": "phone_number", "region": "nigeria", "item_code": "whatsapp"}, rich)
	assert resp.status_code == 201
	order = resp.json()["order"]
	assert order["amount_charged"] == "8000.00"
	assert order["status"] == OrderStatus.PROCESSING
	assert get(client, "/api/balance", rich).json()["balance"] == "12000.00"

	listed = get(client, "/api/orders", rich, status="processing").json()["orders"]
	assert [o["reference"] for o in listed] == [order["reference"]]
	assert get(client, f"/api/orders/{order['reference']}", rich).json()["order"]["status"] == "processing"

	cancelled = post(client, f"/api/orders/{order['reference']}/cancel", account=rich)
	assert cancelled.status_code == 200
	assert cancelled.json()["order"]["refunded"] is True
	assert get(client, "/api/balance", rich).json()["balance"] == "20000.00"

	again = post(client, f"/api/orders/{order['reference']}/cancel", account=rich)
	assert again.status_code == 409
	assert again.json()["error"] == "invalid_transition"


def test_unknown_outcome_is_accepted(client, rich, make_item):
	make_item(cost="0.5", behavior="timeout")
	resp = post(client, "/api/orders", {"kind": "phone_number", "region": "nigeria", "item_code": "whatsapp"}, rich)
	assert resp.status_code == 202
	assert resp.json()["order"]["status"] == "processing"


def test_purchase_errors(client, make_account, make_item):
	poor = make_account(balance="100")
	make_item(cost="0.5")

	resp = post(client, "/api/orders", {"kind": "phone_number", "region": "nigeria", "item_code": "whatsapp"}, poor)
	assert resp.status_code == 402
	assert resp.json()["error"] == "insufficient_funds"

	assert post(client, "/api/orders", {"kind": "phone_number"}, poor).status_code == 400
	missing = post(client, "/api/orders", {"kind": "phone_number", "region": "mars", "item_code": "whatsapp"}, poor)
	assert missing.status_code == 409
	assert missing.json()["error"] == "inventory_exhausted"


def test_orders_are_private(client, rich, make_account, make_item):
	make_item(cost="0.5")
	ref = post(client, "/api/orders", {"kind": "phone_number", "region": "nigeria", "item_code": "whatsapp"}, rich).json()["order"]["reference"]
	other = make_account()

	assert get(client, f"/api/orders/{ref}", other).status_code == 404
	assert post(client, f"/api/orders/{ref}/cancel", account=other).status_code == 404


def test_deposit_flow(client, make_account):
	account = make_account()
	started = post(client, "/api/deposits", {"amount": "5000"}, account)
	assert started.status_code == 201
	reference = started.json()["reference"]

	pending = post(client, "/api/deposits/verify", {"reference": reference}, account).json()
	assert pending["status"] == "pending" and pending["success"] is False

	assert post(client, f"/stub/vendor/pay/{reference}").json()["status"] == "success"
	done = post(client, "/api/deposits/verify", {"reference": reference}, account).json()
	assert done == {"success": True, "status": "completed", "balance": "5000.00"}

	# verifying twice credits once
	assert post(client, "/api/deposits/verify", {"reference": reference}, account).json()["balance"] == "5000.00"


def test_cannot_verify_someone_elses_deposit(client, make_account):
	owner, thief = make_account(), make_account()
	reference = post(client, "/api/deposits", {"amount": "5000"}, owner).json()["reference"]
	post(client, f"/stub/vendor/pay/{reference}")

	resp = post(client, "/api/deposits/verify", {"reference": reference}, thief)
	assert resp.status_code == 400
	assert resp.json()["error"] == "verification_mismatch"
	owner.refresh_from_db()
	assert owner.balance == Decimal("0.00")


def test_deposit_below_minimum(client, make_account):
	resp = post(client, "/api/deposits", {"amount": "10"}, make_account())
	assert resp.status_code == 400
	assert resp.json()["error"] == "deposit_rejected"


def test_catalog(client, make_item):
	make_item(code="telegram", cost="0.25")
	data = get(client, "/api/catalog", kind="phone_number", region="nigeria").json()
	assert data["warning"] is False
	assert data["items"][0]["code"] == "telegram"
	assert data["items"][0]["price"] == "4000.00"

	fallback = get(client, "/api/catalog", kind="phone_number", region="atlantis").json()
	assert fallback["source"] == "fallback" and fallback["warning"] is True

	assert get(client, "/api/catalog", kind="spaceship").status_code == 400


def test_referral_stats_and_apply(client, make_account):
	referrer, referee = make_account(), make_account()
	resp = post(client, "/api/referrals/apply", {"code": referrer.referral_code}, referee)
	assert resp.json()["balance"] == "500.00"

	stats = get(client, "/api/referrals", referrer).json()
	assert stats["referred_count"] == 1


def test_debug_summary(client, rich, make_item):
	make_item(cost="0.5", behavior="fail")
	post(client, "/api/orders", {"kind": "phone_number", "region": "nigeria", "item_code": "whatsapp"}, rich)

	summary = get(client, "/api/debug/summary", rich).json()
	assert summary["match"] is True
	assert summary["balance"] == summary["reconstructed"] == "20000.00"


def test_provider_balances(client):
	providers = get(client, "/api/ops/providers").json()["providers"]
	assert {p["identifier"] for p in providers} >= {"sms-alpha", "voucher-hub"}
