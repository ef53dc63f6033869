"""WSGI entrypoint for vendwallet."""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "vendwallet.settings")

application = get_wsgi_application()
