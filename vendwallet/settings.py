"""Django settings for the vendwallet fulfillment core.


This project runs the wallet side of a digital-goods shop:
- Wallet deposits through a payment gateway (vendor_stub in dev)
- Purchases fulfilled by interchangeable upstream providers (vendor_stub in dev)
- Refunds, cancellations and expiry reconciled against the wallet ledger


Provider wire formats, admin screens and email are handled elsewhere.
"""

import os
from pathlib import Path
from decimal import Decimal


BASE_DIR = Path(__file__).resolve().parent.parent
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = os.getenv("DEBUG", "1") in ("1", "true", "True", "yes")
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "*").split(",")
CSRF_TRUSTED_ORIGINS = os.getenv("CSRF_TRUSTED_ORIGINS", "").split(",") if os.getenv("CSRF_TRUSTED_ORIGINS") else []

def env_bool(name, default=""):
    v = os.getenv(name, default)
    return v.lower() in ("1", "true", "yes", "on")

def env_decimal(name, default):
    return Decimal(os.getenv(name, default))

#######################
# Wallet balances and retail prices are held in this currency
WALLET_CURRENCY = os.getenv("WALLET_CURRENCY", "NGN")

# Deposit limits (local currency)
MIN_DEPOSIT = env_decimal("MIN_DEPOSIT", "1000.00")
MAX_DEPOSIT = env_decimal("MAX_DEPOSIT", "1000000.00")

# Minutes before an unverified gateway deposit is expired by the sweep
DEPOSIT_EXPIRY_MINUTES = int(os.getenv("DEPOSIT_EXPIRY_MINUTES", "60"))

# Refuse to run provider I/O inside an open DB transaction
STRICT_IO_GUARD = env_bool("STRICT_IO_GUARD", "1")
#######################


INSTALLED_APPS = [
	"django.contrib.contenttypes",
	"django.contrib.auth",
	"django.contrib.sessions",
	"django.contrib.messages",
	"django.contrib.staticfiles",
	# local apps
	"core",
	"api",
	"vendor_stub",
]


MIDDLEWARE = [
	"django.middleware.security.SecurityMiddleware",
	"django.contrib.sessions.middleware.SessionMiddleware",
	"django.middleware.common.CommonMiddleware",
	"django.middleware.csrf.CsrfViewMiddleware",
	"django.contrib.auth.middleware.AuthenticationMiddleware",
	"django.contrib.messages.middleware.MessageMiddleware",
]


ROOT_URLCONF = "vendwallet.urls"
TEMPLATES = [
	{
		"BACKEND": "django.template.backends.django.DjangoTemplates",
		"DIRS": [],
		"APP_DIRS": True,
		"OPTIONS": {
			"context_processors": [
				"django.template.context_processors.debug",
				"django.template.context_processors.request",
				"django.contrib.auth.context_processors.auth",
				"django.contrib.messages.context_processors.messages",
			],
		},
	},
]


WSGI_APPLICATION = "vendwallet.wsgi.application"


DB_ENGINE = os.getenv("DB_ENGINE", "sqlite")
if DB_ENGINE == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB", "vendwallet"),
            "USER": os.getenv("POSTGRES_USER", "vendwallet"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", "vendwallet"),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }


# Catalog/quote caches and the config snapshot live here
CACHES = {
	"default": {
		"BACKEND": os.getenv("CACHE_BACKEND", "django.core.cache.backends.locmem.LocMemCache"),
		"LOCATION": os.getenv("CACHE_LOCATION", "vendwallet"),
	}
}

CONFIG_CACHE_TTL = int(os.getenv("CONFIG_CACHE_TTL", "60"))
CATALOG_CACHE_TTL = int(os.getenv("CATALOG_CACHE_TTL", "1800"))
QUOTE_CACHE_TTL = int(os.getenv("QUOTE_CACHE_TTL", "300"))
# How long the last non-empty catalog/quote is kept to cover upstream outages
STALE_CACHE_TTL = int(os.getenv("STALE_CACHE_TTL", "86400"))


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOGGING = {
	"version": 1,
	"disable_existing_loggers": False,
	"formatters": {
		"plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
	},
	"handlers": {
		"console": {"class": "logging.StreamHandler", "formatter": "plain"},
	},
	"loggers": {
		"core": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
		"api": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
		"vendor_stub": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
	},
}


AUTH_PASSWORD_VALIDATORS = []


LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True


STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Upstream fulfillers. Built once into core.adapters.registry at startup.
# kind: phone_number | esim | smm | voucher
FULFILLMENT_PROVIDERS = [
	{
		"identifier": "sms-alpha",
		"display_name": "SMS Alpha",
		"kind": "phone_number",
		"backend": "core.adapters.stub_provider.StubProvider",
		"cost_currency": "USD",
		"priority": 1,
		"options": {"vendor": "sms-alpha", "status_map": "phone_number"},
	},
	{
		"identifier": "sms-bravo",
		"display_name": "SMS Bravo",
		"kind": "phone_number",
		"backend": "core.adapters.stub_provider.StubProvider",
		"cost_currency": "USD",
		"priority": 2,
		"options": {"vendor": "sms-bravo", "status_map": "phone_number"},
	},
	{
		"identifier": "esim-one",
		"display_name": "eSIM One",
		"kind": "esim",
		"backend": "core.adapters.stub_provider.StubProvider",
		"cost_currency": "USD",
		"priority": 1,
		"options": {"vendor": "esim-one", "status_map": "esim"},
	},
	{
		"identifier": "smm-boost",
		"display_name": "SMM Boost",
		"kind": "smm",
		"backend": "core.adapters.stub_provider.StubProvider",
		"cost_currency": "USD",
		"priority": 1,
		"options": {"vendor": "smm-boost", "status_map": "smm"},
	},
	{
		"identifier": "voucher-hub",
		"display_name": "Voucher Hub",
		"kind": "voucher",
		"backend": "core.adapters.stub_provider.StubProvider",
		"cost_currency": "NGN",
		"priority": 1,
		"options": {"vendor": "voucher-hub", "status_map": "voucher"},
	},
]

PAYMENT_GATEWAYS = {
	"stub": {
		"backend": "core.adapters.payment_gateway.StubGateway",
		"options": {"redirect_base": os.getenv("STUB_GATEWAY_REDIRECT", "http://localhost:8000/stub/vendor/pay")},
	},
}

# Baseline configuration; Setting rows override these at runtime (core.config)
FULFILLMENT_DEFAULTS = {
	"pricing": {
		"phone_number": {"markup_percentage": "1000", "min_price": "500", "platform_fee": "0"},
		"esim": {"markup_percentage": "150", "min_price": "1000", "platform_fee": "0"},
		"smm": {"markup_percentage": "500", "min_price": "100", "platform_fee": "0"},
		"voucher": {"markup_percentage": "110", "min_price": "100", "platform_fee": "50"},
	},
	"exchange_rates": {"USD": "1600", "RUB": "20", "NGN": "1"},
	"min_purchase": {"phone_number": "0", "esim": "1000", "smm": "0", "voucher": "0"},
	"max_open_orders": 5,
	"order_ttl_minutes": 20,
	"referral_signup_bonus": "500",
	"referral_commission_rate": "10",
	"referral_commission_rate_after": "0",
	"referral_commission_purchases": 3,
	"min_deposit": str(MIN_DEPOSIT),
	"max_deposit": str(MAX_DEPOSIT),
}

# Served with warning=True when an upstream catalog is down and nothing is cached
CATALOG_FALLBACK = {
	"phone_number": [
		{"code": "nigeria", "display_name": "Nigeria"},
		{"code": "usa", "display_name": "United States"},
		{"code": "england", "display_name": "United Kingdom"},
		{"code": "india", "display_name": "India"},
	],
	"esim": [
		{"code": "1gb-7d", "display_name": "1 GB, 7 days"},
		{"code": "5gb-30d", "display_name": "5 GB, 30 days"},
		{"code": "10gb-30d", "display_name": "10 GB, 30 days"},
	],
	"smm": [
		{"code": "ig-followers-1k", "display_name": "Instagram followers (1000)"},
		{"code": "tiktok-likes-1k", "display_name": "TikTok likes (1000)"},
		{"code": "yt-views-1k", "display_name": "YouTube views (1000)"},
	],
	"voucher": [
		{"code": "airtime-1000", "display_name": "Airtime 1000"},
		{"code": "data-1gb", "display_name": "Data bundle 1 GB"},
	],
}
