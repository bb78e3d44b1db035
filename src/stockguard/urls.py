from django.urls import path

from . import views

app_name = "stockguard"

urlpatterns = [
    path("product/<uuid:product_id>/check-stock", views.check_stock, name="check_stock"),
    path("product/<uuid:product_id>/reserve-stock", views.reserve_stock, name="reserve_stock"),
    path("product/<uuid:product_id>/release-stock", views.release_stock, name="release_stock"),
    path("product/<uuid:product_id>/stock", views.set_stock, name="set_stock"),
    path("product/stock-sync", views.stock_sync, name="stock_sync"),
    path("checkout", views.checkout, name="checkout"),
    path("payments/webhook", views.payment_webhook, name="payment_webhook"),
]
