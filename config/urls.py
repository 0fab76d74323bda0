from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path("admin/", admin.site.urls),

    # Session login for the browsable API
    path("api-auth/", include("rest_framework.urls")),

    # Results API
    path("", include("results.urls")),
]
