# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Settings, URLs, the WSGI application and the Celery app.
#
# The Celery app is imported here so it is loaded when Django starts and
# shared_task picks it up.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
