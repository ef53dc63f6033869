"""URL routing for the API + the local vendor stub.


The /api/ namespace exposes wallet and order operations; /stub/vendor/ exposes the
deterministic upstream used by the stub adapters. In production, real providers
replace the stub.
"""

from django.urls import path, include


urlpatterns = [
	path("api/", include("api.urls")),
	path("stub/vendor/", include("vendor_stub.urls")),
]
