from django.urls import path
from .views import balance, catalog, quote, create_order, order_detail, order_action, pay, payment_status


urlpatterns = [
	path("pay/<str:reference>", pay, name="stub_pay"),
	path("payments/<str:reference>", payment_status, name="stub_payment_status"),
	path("<str:vendor>/balance", balance),
	path("<str:vendor>/catalog", catalog),
	path("<str:vendor>/quote", quote),
	path("<str:vendor>/orders", create_order),
	path("<str:vendor>/orders/<str:order_id>", order_detail),
	path("<str:vendor>/orders/<str:order_id>/<str:action>", order_action),
]
