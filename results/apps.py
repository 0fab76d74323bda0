from django.apps import AppConfig


class ResultsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "results"

    def ready(self):
        # Import signals to enable change tracking and grading cache invalidation
        from . import signals  # noqa: F401
