from django.apps import AppConfig


class VendorStubConfig(AppConfig):
	default_auto_field = "django.db.models.BigAutoField"
	name = "vendor_stub"
	verbose_name = "Deterministic upstream vendor and payment gateway"
