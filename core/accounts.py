"""Account creation."""

import logging

from django.db import IntegrityError, transaction

from .models import Account, generate_referral_code
from .referrals import apply_referral_code

logger = logging.getLogger(__name__)

REFERRAL_CODE_ATTEMPTS = 10


def _unused_referral_code() -> str:
	for _ in range(REFERRAL_CODE_ATTEMPTS):
		code = generate_referral_code()
		if not Account.objects.filter(referral_code=code).exists():
			return code
	raise IntegrityError("Could not allocate a unique referral code")


@transaction.atomic
def create_account(email: str, display_name: str = "", referral_code: str | None = None, config=None) -> Account:
	"""
	Create a wallet owner with its own referral code. When referral_code (someone
	else's) is given, the referral link and signup bonus are applied in the same unit.
	"""
	email = email.strip().lower()
	account = Account.objects.create(
		email=email,
		display_name=display_name or email.split("@")[0],
		referral_code=_unused_referral_code(),
	)
	if referral_code:
		apply_referral_code(account, referral_code, config)
	logger.info("Account created", extra={"account_id": str(account.pk), "referred": bool(referral_code)})
	return account
