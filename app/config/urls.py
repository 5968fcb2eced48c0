"""
URL configuration for the settlement service.

The settlement ledger is driven by services and Celery workers; the only
HTTP surface is the Django admin, used to inspect the ledger and adjust
commission rates.

URL Structure:
    /admin/                        - Django admin interface
"""

from django.contrib import admin
from django.urls import path

urlpatterns = [
    path("admin/", admin.site.urls),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Settlement Admin"
admin.site.site_title = "Settlement Admin"
admin.site.index_title = "Marketplace settlement ledger"
