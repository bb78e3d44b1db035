from django.apps import AppConfig


class StockGuardConfig(AppConfig):
    name = "stockguard"
    verbose_name = "Stock reservation"
    default_auto_field = "django.db.models.BigAutoField"
