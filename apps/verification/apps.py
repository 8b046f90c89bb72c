from django.apps import AppConfig  # type: ignore


class VerificationConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.verification"
    verbose_name = "Verification"
