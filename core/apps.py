from django.apps import AppConfig


class CoreConfig(AppConfig):
	default_auto_field = "django.db.models.BigAutoField"
	name = "core"
	verbose_name = "Wallet and fulfillment core"

	def ready(self):
		# connects the setting_changed receiver that rebuilds the provider registry
		from .adapters import registry  # noqa: F401
